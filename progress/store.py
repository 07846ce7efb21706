import copy
import json
import logging
import math
import os
import tempfile
from datetime import date, datetime

from exercise.kinds import DRILL_LEVELS
from progress.achievements import (
    ACHIEVEMENTS,
    drill_achievement,
    result_achievements,
    streak_achievement,
)
from utils.music_utils import note_to_frequency

logger = logging.getLogger(__name__)

XP_PER_LEVEL = 100
DAILY_BONUS_XP = 10
SECTION_XP_MULTIPLIER = {1: 1.0, 2: 1.5, 3: 2.0, 4: 1.0}
UNLOCK_AFTER = 3             # consecutive passes / completed runs
STREAK_MINUTES = 5.0         # daily minutes that count as a practice day
HISTORY_LIMIT = 100

DEFAULT_DATA = {
    "settings": {
        "target_note": "E3",
        "target_frequency": 164.81,
    },
    "progress": {
        "unlocked": [1],
        "sections": {
            "1": {"attempts": 0, "consecutive_successes": 0, "best_accuracy": None},
            "2": {"attempts": 0, "completed_sessions": 0},
            "3": {"attempts": 0, "consecutive_successes": 0, "best_stability": None},
            "4": {"attempts": 0},
        },
        "drills": {level: [] for level in DRILL_LEVELS},
    },
    "gamification": {
        "level": 1,
        "xp": 0,
        "total_xp": 0,
        "streak": 0,
        "longest_streak": 0,
        "last_practice_date": None,
        "streak_freezes": 1,
        "achievements": [],
        "daily_minutes": {},
    },
    "history": {
        "pitch_sustain": [],
        "resonance_sustain": [],
    },
}


def streak_multiplier(streak):
    if streak >= 30:
        return 3
    if streak >= 7:
        return 2
    return 1


def _atomic_write_json(path, obj):
    """Atomically write JSON to a file."""
    dirpath = os.path.dirname(path) or "."
    os.makedirs(dirpath, exist_ok=True)
    fd, tmp = tempfile.mkstemp(prefix=".tmp_", dir=dirpath, text=True)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(obj, f, indent=2)
        os.replace(tmp, path)
    finally:
        if os.path.exists(tmp):
            os.remove(tmp)


class ProgressStore:
    """
    JSON-file ledger for settings, XP, levels, streaks, achievements and
    section unlocks. The exercise core only hands it finished results.
    """

    def __init__(self, path):
        self.path = str(path)
        self.data = self._load()

    # ---------------------------------------------------------
    # Persistence
    # ---------------------------------------------------------
    def _load(self):
        data = copy.deepcopy(DEFAULT_DATA)
        if not os.path.exists(self.path):
            return data

        try:
            with open(self.path, "r", encoding="utf-8") as f:
                stored = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning("could not read %s (%s), using defaults", self.path, e)
            return data

        if isinstance(stored, dict):
            for key, value in stored.items():
                if isinstance(value, dict) and isinstance(data.get(key), dict):
                    data[key].update(value)
                else:
                    data[key] = value
        return data

    def save(self):
        _atomic_write_json(self.path, self.data)

    def reset(self):
        self.data = copy.deepcopy(DEFAULT_DATA)
        self.save()

    # ---------------------------------------------------------
    # Settings
    # ---------------------------------------------------------
    @property
    def settings(self):
        return dict(self.data["settings"])

    def set_target_note(self, note):
        freq = note_to_frequency(note)
        self.data["settings"]["target_note"] = note
        self.data["settings"]["target_frequency"] = round(freq, 2)
        self.save()
        return freq

    # ---------------------------------------------------------
    # XP and levels
    # ---------------------------------------------------------
    @property
    def gamification(self):
        return self.data["gamification"]

    def add_xp(self, amount):
        g = self.gamification
        gained = int(math.floor(amount * streak_multiplier(g["streak"])))
        g["xp"] += gained
        g["total_xp"] += gained

        while g["xp"] >= XP_PER_LEVEL:
            g["xp"] -= XP_PER_LEVEL
            g["level"] += 1

        self.save()
        return {"xp_gained": gained, "level": g["level"]}

    def award_xp(self, section, score, today=None):
        today = today or date.today()
        xp = math.floor(score / 10) * SECTION_XP_MULTIPLIER.get(section, 1.0)
        if self.gamification["last_practice_date"] != today.isoformat():
            xp += DAILY_BONUS_XP
        return self.add_xp(xp)

    def progress_to_next_level(self):
        xp = self.gamification["xp"]
        return {
            "current_xp": xp,
            "xp_needed": XP_PER_LEVEL,
            "percentage": round(xp / XP_PER_LEVEL * 100),
        }

    # ---------------------------------------------------------
    # Streaks
    # ---------------------------------------------------------
    def update_streak(self, today=None):
        today = today or date.today()
        g = self.gamification
        last = g["last_practice_date"]

        if last is None:
            g["streak"] = 1
        else:
            diff = (today - date.fromisoformat(last)).days
            if diff == 0:
                return g["streak"]
            if diff == 1:
                g["streak"] += 1
            elif diff == 2 and g["streak_freezes"] > 0:
                g["streak_freezes"] -= 1
                g["streak"] += 1
            else:
                g["streak"] = 1

        g["last_practice_date"] = today.isoformat()
        g["longest_streak"] = max(g["longest_streak"], g["streak"])
        if g["streak"] % 7 == 0:
            g["streak_freezes"] += 1

        self.save()
        return g["streak"]

    def add_practice_minutes(self, minutes, today=None):
        today = today or date.today()
        daily = self.gamification["daily_minutes"]
        key = today.isoformat()
        daily[key] = daily.get(key, 0.0) + float(minutes)

        if daily[key] >= STREAK_MINUTES:
            self.update_streak(today)
        self.save()

    def practice_days_in_month(self, today=None):
        today = today or date.today()
        return sum(
            1 for key in self.gamification["daily_minutes"]
            if date.fromisoformat(key).year == today.year
            and date.fromisoformat(key).month == today.month
        )

    # ---------------------------------------------------------
    # Achievements
    # ---------------------------------------------------------
    def unlock_achievement(self, ach_id):
        unlocked = self.gamification["achievements"]
        if ach_id in unlocked:
            return False
        unlocked.append(ach_id)
        self.save()
        return True

    def check_achievement(self, ach_id):
        """Unlock and reward an achievement; returns it only the first time."""
        achievement = ACHIEVEMENTS.get(ach_id)
        if achievement is None:
            return None
        if not self.unlock_achievement(ach_id):
            return None
        self.add_xp(achievement["xp"])
        logger.info("achievement unlocked: %s", achievement["name"])
        return dict(achievement, id=ach_id)

    def check_streak_achievements(self, today=None):
        earned = []
        ach_id = streak_achievement(self.gamification["streak"])
        if ach_id:
            a = self.check_achievement(ach_id)
            if a:
                earned.append(a)
        if self.practice_days_in_month(today) >= 30:
            a = self.check_achievement("overachiever")
            if a:
                earned.append(a)
        return earned

    # ---------------------------------------------------------
    # Sections
    # ---------------------------------------------------------
    def section_stats(self, section):
        return self.data["progress"]["sections"][str(section)]

    def is_unlocked(self, section):
        return section in self.data["progress"]["unlocked"]

    def unlock_section(self, section):
        if self.is_unlocked(section):
            return False
        self.data["progress"]["unlocked"].append(section)
        logger.info("section %d unlocked", section)
        self.save()
        return True

    def _record_pass(self, section, passed):
        stats = self.section_stats(section)
        if passed:
            stats["consecutive_successes"] += 1
            if stats["consecutive_successes"] >= UNLOCK_AFTER:
                self.unlock_section(section + 1)
        else:
            stats["consecutive_successes"] = 0

    def _append_history(self, key, entry):
        hist = self.data["history"].setdefault(key, [])
        hist.append(dict(entry, timestamp=datetime.now().isoformat()))
        del hist[:-HISTORY_LIMIT]

    def record_result(self, result, today=None, now=None):
        """
        Fold one finished session into the ledger.

        Disqualified sessions award nothing and reset the section's
        consecutive-success counter; no-data sessions are ignored.
        """
        summary = {"xp_gained": 0, "achievements": [], "unlocked": []}
        if result is None or result.no_data:
            return summary

        today = today or date.today()
        section = result.section
        stats = self.section_stats(section)
        before = set(self.data["progress"]["unlocked"])

        if result.disqualified:
            if "consecutive_successes" in stats:
                stats["consecutive_successes"] = 0
            self.save()
            return summary

        if result.score is None:
            return summary

        stats["attempts"] += 1

        if result.kind == "pitch_sustain":
            accuracy = abs(result.avg_pitch - result.target_frequency)
            best = stats.get("best_accuracy")
            stats["best_accuracy"] = accuracy if best is None else min(best, accuracy)
            self._append_history("pitch_sustain", {
                "avg_pitch": result.avg_pitch,
                "std_dev": result.avg_stddev,
                "score": result.score,
            })
            self._record_pass(section, result.passed)
        elif result.kind == "resonance_sustain":
            best = stats.get("best_stability")
            stats["best_stability"] = (
                result.avg_stability if best is None
                else min(best, result.avg_stability)
            )
            self._append_history("resonance_sustain", {
                "stability": result.avg_stability,
                "score": result.score,
            })
            self._record_pass(section, result.passed)

        xp = self.award_xp(section, result.score, today=today)
        summary["xp_gained"] = xp["xp_gained"]
        summary["level"] = xp["level"]

        for ach_id in result_achievements(result, stats["attempts"], now=now):
            a = self.check_achievement(ach_id)
            if a:
                summary["achievements"].append(a)

        self.add_practice_minutes(result.duration / 60.0, today=today)
        summary["achievements"].extend(self.check_streak_achievements(today))
        summary["unlocked"] = sorted(set(self.data["progress"]["unlocked"]) - before)
        self.save()
        return summary

    def record_sentence_run(self, successful):
        """A full six-sentence run; three successful runs unlock section 3."""
        stats = self.section_stats(2)
        stats["attempts"] += 1
        if successful:
            stats["completed_sessions"] += 1
            if stats["completed_sessions"] >= UNLOCK_AFTER:
                self.unlock_section(3)
        self.save()
        return stats["completed_sessions"]

    def record_drill_item(self, level, item, passed):
        """Mark a drill item mastered; returns a newly earned achievement."""
        completed = self.data["progress"]["drills"].setdefault(level, [])
        if not passed or item in completed:
            return None
        completed.append(item)
        self.save()

        ach_id = drill_achievement(level, len(completed), len(DRILL_LEVELS.get(level, [])))
        return self.check_achievement(ach_id) if ach_id else None
