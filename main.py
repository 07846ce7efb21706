import logging
import os
import sys
from time import monotonic

from audio.frame_source import AudioUnavailableError, MicFrameSource
from exercise.kinds import DRILL_LEVELS, EXERCISE_KINDS, get_kind
from exercise.sentence_test import SentenceTest
from exercise.word_drill import WordDrill
from progress.store import ProgressStore
from trainer.controller import Trainer

logger = logging.getLogger(__name__)

# Single timed exercises; the sentence test and drills are sequences
RUNNABLE_KINDS = sorted(name for name in EXERCISE_KINDS if name != "sentence")

SENTENCE_SECONDS = 6.0   # speaking window per sentence
DRILL_ITEM_SECONDS = 3.0  # speaking window per drill item


def _prompt(event):
    return event.get("text", event.get("item"))


def run_sequence(sequencer, frames, seconds_per_item, clock=monotonic):
    """
    Drive a sentence test or word drill headlessly: every item gets a fixed
    speaking window, then the sequencer moves on.

    Returns the final event, or None if the frames ran out first.
    """
    now = clock()
    event = sequencer.start(now=now)
    logger.info("say: %s", _prompt(event))
    item_end = now + seconds_per_item

    for frame in frames:
        now = clock()
        if now >= item_end:
            event = sequencer.next(now=now)
            if event["event"] == "finished":
                return event
            if event["event"] == "no_data":
                logger.info("nothing heard, again: %s", _prompt(event))
            else:
                logger.info("say: %s", _prompt(event))
            item_end = now + seconds_per_item
        sequencer.process_frame(frame, now=now)
    return None


def _run_single(trainer, source, store, kind):
    result = None
    try:
        trainer.start_exercise(kind, target_frequency=store.settings["target_frequency"])
        logger.info("%s running, press Ctrl+C to stop", kind.name)
        for frame in source.frames():
            status = trainer.process_frame(frame)
            if "result" in status:
                result = status["result"]
                break
    except KeyboardInterrupt:
        pass
    finally:
        if result is None:
            result = trainer.stop_exercise()

    if result is None:
        return

    logger.info("%s", result.message)
    if result.score is not None:
        summary = store.record_result(result)
        logger.info(
            "score %d (%s), +%d XP",
            result.score,
            "passed" if result.passed else "not passed",
            summary["xp_gained"],
        )
        for achievement in summary["achievements"]:
            logger.info("achievement: %s", achievement["name"])
    elif result.disqualified:
        store.record_result(result)


def _run_sequencer(sequencer, source, seconds_per_item):
    event = None
    try:
        event = run_sequence(sequencer, source.frames(), seconds_per_item)
    except KeyboardInterrupt:
        pass
    finally:
        if event is None:
            sequencer.cancel()

    if event is None:
        logger.info("stopped before the end")
    elif "successful" in event:
        logger.info(
            "sentence test %s (%d/6 passed)",
            "passed" if event["successful"] else "not passed",
            event["passed"],
        )
    else:
        logger.info("mastered: %s", ", ".join(event["mastered"]) or "none")


def main(argv=None):
    logging.basicConfig(
        level=logging.INFO, format="%(asctime)s %(levelname)s: %(message)s"
    )
    argv = sys.argv[1:] if argv is None else argv

    command = argv[0] if argv else "pitch_sustain"
    level = None
    if command == "drill":
        level = argv[1] if len(argv) > 1 else "vowels"
        if level not in DRILL_LEVELS:
            logger.error("unknown drill level %r, choose one of: %s",
                         level, ", ".join(DRILL_LEVELS))
            return 2
    elif command != "sentence" and command not in RUNNABLE_KINDS:
        logger.error("unknown exercise %r, choose one of: %s, sentence, drill",
                     command, ", ".join(RUNNABLE_KINDS))
        return 2

    # ------------------------------------------------------------
    # 1. Settings + progress ledger
    # ------------------------------------------------------------
    store = ProgressStore(os.path.join(os.getcwd(), "data", "progress.json"))

    # ------------------------------------------------------------
    # 2. Microphone + trainer
    # ------------------------------------------------------------
    source = MicFrameSource()
    try:
        source.open()
    except AudioUnavailableError as e:
        logger.error("%s", e)
        return 1

    trainer = Trainer(sample_rate=source.sample_rate, frame_source=source)

    # ------------------------------------------------------------
    # 3. Run until the exercise or sequence ends, or Ctrl+C
    # ------------------------------------------------------------
    try:
        if command == "sentence":
            _run_sequencer(SentenceTest(trainer, store=store), source, SENTENCE_SECONDS)
        elif command == "drill":
            _run_sequencer(WordDrill(trainer, level, store=store), source, DRILL_ITEM_SECONDS)
        else:
            _run_single(trainer, source, store, get_kind(command))
    finally:
        source.close()

    return 0


if __name__ == "__main__":
    sys.exit(main())
