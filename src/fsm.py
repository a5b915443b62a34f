from enum import Enum, auto
import logging

logger = logging.getLogger(__name__)


class QuizState(Enum):
    NO_SESSION = auto()  # Nothing loaded yet for today
    AWAITING_CONFIRMATION = auto()  # No row for today, waiting for the user to start
    QUESTION_ACTIVE = auto()  # Required question on screen, timer running
    ANSWER_REVEALED = auto()  # Result of a required question on screen
    COMPLETED = auto()  # All required questions done
    BONUS_OFFERED = auto()  # Bonus question on screen, timer running
    BONUS_REVEALED = auto()  # Result of the bonus question on screen
    BONUS_DONE = auto()  # Bonus answered, nothing left today


class QuizAction(Enum):
    START_NEW = auto()
    RESUME_QUESTION = auto()
    RESUME_COMPLETED = auto()
    RESUME_BONUS_DONE = auto()
    CONFIRM = auto()
    ANSWER = auto()
    NEXT_QUESTION = auto()
    FINISH = auto()
    OFFER_BONUS = auto()
    RESET = auto()


TERMINAL_STATES = frozenset({QuizState.COMPLETED, QuizState.BONUS_DONE})
TIMED_STATES = frozenset({QuizState.QUESTION_ACTIVE, QuizState.BONUS_OFFERED})


class QuizStateMachine:
    """
    Pure FSM Logic.
    It only cares about State Transitions, not UI or DB.
    """

    def __init__(self, initial_state: QuizState = QuizState.NO_SESSION):
        self._state = initial_state

    @property
    def current_state(self) -> QuizState:
        return self._state

    def can(self, action: QuizAction) -> bool:
        return self._next(action) is not None

    def _next(self, action: QuizAction) -> QuizState | None:
        match (self._state, action):
            # Entry
            case (QuizState.NO_SESSION, QuizAction.START_NEW):
                return QuizState.AWAITING_CONFIRMATION
            case (QuizState.NO_SESSION | QuizState.AWAITING_CONFIRMATION, QuizAction.RESUME_QUESTION):
                return QuizState.QUESTION_ACTIVE
            case (QuizState.NO_SESSION | QuizState.AWAITING_CONFIRMATION, QuizAction.RESUME_COMPLETED):
                return QuizState.COMPLETED
            case (QuizState.NO_SESSION | QuizState.AWAITING_CONFIRMATION, QuizAction.RESUME_BONUS_DONE):
                return QuizState.BONUS_DONE
            case (QuizState.AWAITING_CONFIRMATION, QuizAction.CONFIRM):
                return QuizState.QUESTION_ACTIVE

            # Required questions
            case (QuizState.QUESTION_ACTIVE, QuizAction.ANSWER):
                return QuizState.ANSWER_REVEALED
            case (QuizState.ANSWER_REVEALED, QuizAction.NEXT_QUESTION):
                return QuizState.QUESTION_ACTIVE
            case (QuizState.ANSWER_REVEALED, QuizAction.FINISH):
                return QuizState.COMPLETED

            # Bonus
            case (QuizState.COMPLETED, QuizAction.OFFER_BONUS):
                return QuizState.BONUS_OFFERED
            case (QuizState.BONUS_OFFERED, QuizAction.ANSWER):
                return QuizState.BONUS_REVEALED
            case (QuizState.BONUS_REVEALED, QuizAction.FINISH):
                return QuizState.BONUS_DONE

            case (_, QuizAction.RESET):
                return QuizState.NO_SESSION

            case _:
                return None

    def transition(self, action: QuizAction) -> bool:
        """
        Applies the action. Invalid transitions are logged and leave the state untouched.
        """
        previous = self._state
        target = self._next(action)

        if target is None:
            logger.error(f"⛔ INVALID TRANSITION: {previous.name} + {action.name}")
            return False

        self._state = target
        logger.info(f"🔄 FSM: {previous.name} --[{action.name}]--> {target.name}")
        return True
