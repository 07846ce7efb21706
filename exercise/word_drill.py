import logging
from dataclasses import dataclass
from typing import Optional

from exercise.kinds import DRILL_LEVELS, WORD_DRILL

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DrillOutcome:
    index: int
    item: str
    score: Optional[int]
    passed: bool
    achievement: Optional[dict] = None


class WordDrill:
    """
    Walks one drill level (vowels, words or phrases) item by item.

    Every item is its own scored word-drill session; ``next`` closes the
    current item and starts the following one. Passed items are reported to
    the progress store, which tracks mastery and drill achievements.
    """

    def __init__(self, trainer, level, store=None):
        if level not in DRILL_LEVELS:
            raise ValueError(f"unknown drill level: {level!r}")
        self.trainer = trainer
        self.level = level
        self.items = list(DRILL_LEVELS[level])
        self.store = store
        self.index = 0
        self.outcomes = []
        self.finished = False

    @property
    def current_item(self):
        if 0 <= self.index < len(self.items):
            return self.items[self.index]
        return None

    @property
    def mastered(self):
        return [o.item for o in self.outcomes if o.passed]

    def start(self, now=None):
        self.index = 0
        self.outcomes = []
        self.finished = False
        self.trainer.start_exercise(WORD_DRILL, now=now)
        return {"event": "start_item", "index": 0, "item": self.current_item}

    def process_frame(self, frame, now=None):
        return self.trainer.process_frame(frame, now=now)

    def next(self, now=None):
        if self.finished:
            return {"event": "finished", "mastered": self.mastered}

        result = self.trainer.stop_exercise(now=now)

        if result is None or result.no_data:
            logger.info("nothing heard for %r, repeating it", self.current_item)
            self.trainer.start_exercise(WORD_DRILL, now=now)
            return {"event": "no_data", "index": self.index, "item": self.current_item}

        item = self.items[self.index]
        passed = bool(result.passed)
        achievement = None
        if self.store is not None:
            self.store.record_result(result)
            achievement = self.store.record_drill_item(self.level, item, passed)

        outcome = DrillOutcome(
            index=self.index,
            item=item,
            score=result.score,
            passed=passed,
            achievement=achievement,
        )
        self.outcomes.append(outcome)
        logger.info("%s %r: score %s", self.level, item, result.score)

        self.index += 1
        if self.index >= len(self.items):
            self.finished = True
            return {"event": "finished", "outcome": outcome, "mastered": self.mastered}

        self.trainer.start_exercise(WORD_DRILL, now=now)
        return {
            "event": "next_item",
            "outcome": outcome,
            "index": self.index,
            "item": self.current_item,
        }

    def cancel(self, now=None):
        self.trainer.stop_exercise(now=now)
        self.finished = True
