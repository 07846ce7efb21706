"""Achievement definitions and the rules that unlock them."""

ACHIEVEMENTS = {
    "firstSteps": {"name": "First Steps", "description": "Complete your first exercise", "xp": 10},
    "pitchPerfect": {"name": "Pitch Perfect", "description": "Hit target within 1Hz", "xp": 50},
    "rockSolid": {"name": "Rock Solid", "description": "Sustain for 30s with <5Hz std dev", "xp": 100},
    "resonanceMaster": {"name": "Resonance Master", "description": "Complete Section II", "xp": 150},
    "wordWizard": {"name": "Word Wizard", "description": "Master 50 words", "xp": 200},
    "consistent7": {"name": "Week Warrior", "description": "7 day streak", "xp": 75},
    "consistent30": {"name": "Monthly Master", "description": "30 day streak", "xp": 250},
    "consistent100": {"name": "Century Champion", "description": "100 day streak", "xp": 500},
    "overachiever": {"name": "Overachiever", "description": "Practice 30 days in a month", "xp": 300},
    "earlyBird": {"name": "Early Bird", "description": "Practice 5 days in a row", "xp": 50},
    "nightOwl": {"name": "Night Owl", "description": "Practice at night (after 10 PM)", "xp": 25},
    "marathoner": {"name": "Marathoner", "description": "Practice for 60 minutes in one session", "xp": 100},
    "vowelVirtuoso": {"name": "Vowel Virtuoso", "description": "Master all vowels", "xp": 75},
    "phrasePhenom": {"name": "Phrase Phenom", "description": "Master 25 phrases", "xp": 150},
    "speedster": {"name": "Speedster", "description": "Hit target pitch in under 1 second", "xp": 50},
}

DRILL_MASTERY = {
    "words": ("wordWizard", 50),
    "phrases": ("phrasePhenom", 25),
}


def result_achievements(result, attempts, now=None):
    """Achievement ids earned by one scored session result."""
    earned = []
    if result.disqualified or result.no_data:
        return earned

    if result.kind == "pitch_sustain":
        if attempts == 1:
            earned.append("firstSteps")
        if (
            result.avg_pitch is not None
            and result.target_frequency is not None
            and abs(result.avg_pitch - result.target_frequency) <= 1
        ):
            earned.append("pitchPerfect")
        if result.duration >= 30 and (result.avg_stddev or 0.0) < 5:
            earned.append("rockSolid")
        if result.time_to_hit is not None and result.time_to_hit < 1:
            earned.append("speedster")

    if result.kind == "resonance_sustain" and result.passed:
        earned.append("resonanceMaster")

    if result.duration >= 3600:
        earned.append("marathoner")
    if now is not None and now.hour >= 22:
        earned.append("nightOwl")

    return earned


def streak_achievement(streak):
    """Highest streak milestone reached, if any."""
    if streak >= 100:
        return "consistent100"
    if streak >= 30:
        return "consistent30"
    if streak >= 7:
        return "consistent7"
    if streak >= 5:
        return "earlyBird"
    return None


def drill_achievement(level, completed, level_size):
    if level == "vowels":
        return "vowelVirtuoso" if completed >= level_size else None
    if level in DRILL_MASTERY:
        ach_id, needed = DRILL_MASTERY[level]
        return ach_id if completed >= needed else None
    return None
