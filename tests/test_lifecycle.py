from __future__ import annotations

import unittest

from poster_studio.errors import InvalidTransition
from poster_studio.models.lifecycle import (
    BACKGROUND_TRANSITIONS,
    BackgroundStatus,
    PosterStatus,
    check_background_transition,
    check_poster_transition,
    is_terminal,
)


class BackgroundTransitionTestCase(unittest.TestCase):
    def test_forward_path_is_allowed(self) -> None:
        self.assertEqual(
            check_background_transition("queued", BackgroundStatus.GENERATING),
            BackgroundStatus.GENERATING,
        )
        self.assertEqual(
            check_background_transition("generating", BackgroundStatus.READY),
            BackgroundStatus.READY,
        )
        self.assertEqual(
            check_background_transition("generating", BackgroundStatus.FAILED),
            BackgroundStatus.FAILED,
        )

    def test_terminal_states_refuse_every_move(self) -> None:
        for terminal in (BackgroundStatus.READY, BackgroundStatus.FAILED):
            self.assertTrue(is_terminal(terminal))
            for target in BackgroundStatus:
                with self.assertRaises(InvalidTransition):
                    check_background_transition(terminal.value, target)

    def test_backwards_move_is_refused(self) -> None:
        with self.assertRaises(InvalidTransition) as ctx:
            check_background_transition("generating", BackgroundStatus.QUEUED)
        self.assertEqual(ctx.exception.status_code, 409)
        self.assertEqual(ctx.exception.detail["current"], "generating")

    def test_every_state_has_a_row(self) -> None:
        self.assertEqual(set(BACKGROUND_TRANSITIONS), set(BackgroundStatus))


class PosterTransitionTestCase(unittest.TestCase):
    def test_failed_poster_can_be_retried_but_not_reverted(self) -> None:
        check_poster_transition("failed", PosterStatus.GENERATING)
        with self.assertRaises(InvalidTransition):
            check_poster_transition("failed", PosterStatus.DRAFT)

    def test_double_generation_is_refused(self) -> None:
        with self.assertRaises(InvalidTransition):
            check_poster_transition("generating", PosterStatus.GENERATING)

    def test_completed_is_terminal(self) -> None:
        self.assertTrue(is_terminal(PosterStatus.COMPLETED))
        self.assertFalse(is_terminal(PosterStatus.FAILED))

    def test_draft_can_complete_directly(self) -> None:
        check_poster_transition("draft", PosterStatus.COMPLETED)


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
