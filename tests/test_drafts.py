import asyncio

import pytest

from roombook.changes import Inserted
from roombook.constants import END_MIN, MIN_DURATION, PX_PER_MIN, START_MIN
from roombook.drafts import (
    Cancel,
    Draft,
    DraftActive,
    DraftEditor,
    Gesture,
    Idle,
    PointerDown,
    PointerMove,
    PointerUp,
    ReadyToSave,
    Save,
    SelectScope,
    SetDetails,
    Target,
    activate,
    ready_to_save,
    transition,
)
from roombook.errors import ConstraintViolation, ValidationFailure
from roombook.store import BookingStore

from helpers import DAY, FakeBackend, offline, stored


def y_at(minutes):
    return (minutes - START_MIN) * PX_PER_MIN


def run(state, *events, existing=()):
    for event in events:
        state = transition(state, event, existing)
    return state


def tap(y, x=100, target=Target.SURFACE):
    return [PointerDown(x, y, target), PointerUp(x, y, target)]


@pytest.fixture
def idle():
    return Idle(date=DAY, room="White")


@pytest.fixture
def nine_oclock(idle):
    return run(idle, *tap(y_at(540)))


# ---------- creation ----------


def test_tap_creates_a_default_length_draft(nine_oclock):
    assert isinstance(nine_oclock, DraftActive)
    assert (nine_oclock.draft.start, nine_oclock.draft.end) == (540, 600)
    assert nine_oclock.draft.date == DAY
    assert nine_oclock.draft.room == "White"
    assert nine_oclock.draft.id.startswith("draft-")
    assert nine_oclock.valid


def test_tap_snaps_to_the_grid(idle):
    state = run(idle, *tap(y_at(544)))
    assert state.draft.start == 540
    state = run(idle, *tap(y_at(545)))
    assert state.draft.start == 550


def test_small_jitter_still_counts_as_a_tap(idle):
    state = run(idle, PointerDown(100, 200), PointerMove(106, 206), PointerUp(106, 206))
    assert isinstance(state, DraftActive)


def test_scroll_does_not_create_a_draft(idle):
    state = run(idle, PointerDown(100, 200), PointerMove(100, 207), PointerUp(100, 200))
    assert state == Idle(date=DAY, room="White")


def test_horizontal_drag_does_not_create_a_draft(idle):
    state = run(idle, PointerDown(100, 200), PointerMove(93, 200), PointerUp(100, 200))
    assert isinstance(state, Idle)


def test_release_over_panel_does_not_create_a_draft(idle):
    state = run(idle, PointerDown(100, 200), PointerUp(100, 200, Target.PANEL))
    assert isinstance(state, Idle)


def test_press_on_panel_does_not_create_a_draft(idle):
    state = run(idle, *tap(200, target=Target.PANEL))
    assert isinstance(state, Idle)


def test_secondary_button_does_not_create_a_draft(idle):
    state = run(idle, PointerDown(100, 200, button=2), PointerUp(100, 200))
    assert isinstance(state, Idle)


def test_tap_at_the_bottom_keeps_minimum_duration(idle):
    state = run(idle, *tap(y_at(END_MIN)))
    assert state.draft.start == END_MIN - MIN_DURATION
    assert state.draft.end == END_MIN


def test_tap_near_the_end_shortens_the_default_duration(idle):
    state = run(idle, *tap(y_at(1400)))
    assert (state.draft.start, state.draft.end) == (1400, 1440)


def test_new_tap_replaces_the_open_draft(nine_oclock):
    with_details = transition(nine_oclock, SetDetails(teacher="Yana", lesson_type="Group"))
    state = run(with_details, *tap(y_at(720)))
    assert (state.draft.start, state.draft.end) == (720, 780)
    assert state.draft.teacher is None
    assert state.draft.id != nine_oclock.draft.id


def test_tap_over_existing_booking_is_invalid(idle):
    existing = [stored(560, 620)]
    state = run(idle, *tap(y_at(540)), existing=existing)
    assert isinstance(state, DraftActive)
    assert not state.valid


# ---------- editing ----------


def test_move_keeps_duration(nine_oclock):
    state = run(
        nine_oclock,
        PointerDown(100, 250, Target.DRAFT_BODY),
        PointerMove(100, 250 + 30 * PX_PER_MIN, Target.DRAFT_BODY),
    )
    assert state.drag.gesture is Gesture.MOVE
    assert (state.draft.start, state.draft.end) == (570, 630)


def test_move_clamps_to_the_day(nine_oclock):
    late = run(nine_oclock, PointerDown(100, 250, Target.DRAFT_BODY), PointerMove(100, 99999))
    assert (late.draft.start, late.draft.end) == (END_MIN - 60, END_MIN)
    early = run(nine_oclock, PointerDown(100, 250, Target.DRAFT_BODY), PointerMove(100, -99999))
    assert (early.draft.start, early.draft.end) == (START_MIN, START_MIN + 60)


def test_move_restores_minimum_duration_of_a_short_draft():
    short = DraftActive(draft=Draft(date=DAY, room="White", start=600, end=605), valid=False)
    state = run(short, PointerDown(0, 300, Target.DRAFT_BODY), PointerMove(0, 300 + 20 * PX_PER_MIN))
    assert state.draft.end - state.draft.start == MIN_DURATION
    assert state.valid


def test_resize_start_cannot_pass_minimum_duration(nine_oclock):
    state = run(
        nine_oclock,
        PointerDown(100, y_at(540), Target.DRAFT_TOP),
        PointerMove(100, y_at(700), Target.DRAFT_TOP),
    )
    assert state.drag.gesture is Gesture.RESIZE_START
    assert (state.draft.start, state.draft.end) == (600 - MIN_DURATION, 600)


def test_resize_start_extends_upwards(nine_oclock):
    state = run(
        nine_oclock,
        PointerDown(100, y_at(540), Target.DRAFT_TOP),
        PointerMove(100, y_at(500), Target.DRAFT_TOP),
    )
    assert (state.draft.start, state.draft.end) == (500, 600)


def test_resize_end_clamps_to_start_plus_minimum(nine_oclock):
    state = run(
        nine_oclock,
        PointerDown(100, y_at(600), Target.DRAFT_BOTTOM),
        PointerMove(100, y_at(400), Target.DRAFT_BOTTOM),
    )
    assert state.drag.gesture is Gesture.RESIZE_END
    assert state.draft.start == 540
    assert state.draft.end == 540 + MIN_DURATION


def test_resize_end_clamps_to_end_of_day(nine_oclock):
    state = run(nine_oclock, PointerDown(100, 0, Target.DRAFT_BOTTOM), PointerMove(100, 99999))
    assert state.draft.end == END_MIN


def test_pointer_up_ends_gesture_but_keeps_draft(nine_oclock):
    state = run(
        nine_oclock,
        PointerDown(100, 250, Target.DRAFT_BODY),
        PointerMove(100, 270),
        PointerUp(100, 270),
    )
    assert state.drag is None
    assert (state.draft.start, state.draft.end) == (550, 610)
    # Further motion no longer moves the draft
    assert run(state, PointerMove(100, 500)) == state


def test_second_press_while_captured_is_ignored(nine_oclock):
    dragging = run(nine_oclock, PointerDown(100, 250, Target.DRAFT_BODY, pointer_id=1))
    state = run(
        dragging,
        PointerDown(100, 250, Target.DRAFT_BOTTOM, pointer_id=2),
        PointerMove(100, 400, pointer_id=2),
        PointerUp(100, 400, pointer_id=2),
    )
    assert state == dragging


def test_every_edit_revalidates(nine_oclock):
    existing = [stored(600, 660)]
    state = run(nine_oclock, PointerDown(100, 250, Target.DRAFT_BODY), existing=existing)
    assert state.valid
    state = run(state, PointerMove(100, 250 + 10 * PX_PER_MIN), existing=existing)
    assert (state.draft.start, state.draft.end) == (550, 610)
    assert not state.valid
    state = run(state, PointerMove(100, 250), existing=existing)
    assert state.valid


def test_handles_do_nothing_without_a_draft(idle):
    assert run(idle, PointerDown(0, 0, Target.DRAFT_BODY), PointerMove(0, 100)) == idle


# ---------- saving ----------


def test_ready_to_save_needs_teacher_and_type(nine_oclock):
    assert ready_to_save(nine_oclock) is None
    half = transition(nine_oclock, SetDetails(teacher="Sasha"))
    assert ready_to_save(half) is None
    full = transition(half, SetDetails(lesson_type="Private", note="  bring mats "))

    ready = ready_to_save(full)

    assert isinstance(ready, ReadyToSave)
    assert (ready.start, ready.end) == (540, 600)
    assert ready.note == "bring mats"
    created = ready.to_booking()
    assert created.id is not None
    assert created.teacher == "Sasha"
    assert created.lesson_type == "Private"


def test_invalid_draft_is_never_ready(idle):
    state = run(idle, *tap(y_at(540)), existing=[stored(540, 600)])
    state = transition(state, SetDetails(teacher="Sasha", lesson_type="Group"))
    assert ready_to_save(state) is None


def test_cancel_discards_the_draft(nine_oclock):
    assert transition(nine_oclock, Cancel()) == Idle(date=DAY, room="White")


def test_select_scope_discards_the_draft(nine_oclock):
    assert transition(nine_oclock, SelectScope(date=DAY, room="Grey")) == Idle(date=DAY, room="Grey")


# ---------- editor ----------


def details():
    return SetDetails(teacher="Sasha", lesson_type="Group")


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def editor(backend):
    store = BookingStore(backend)
    store.date = DAY
    return DraftEditor(store, DAY, "White")


@pytest.mark.asyncio
async def test_editor_saves_and_returns_to_idle(editor, backend):
    for event in tap(y_at(540)) + [details()]:
        editor.dispatch(event)
    assert editor.can_save

    saved = await editor.save()

    assert isinstance(editor.state, Idle)
    assert backend.inserted == [saved]
    assert editor.store.for_room("White") == [saved]


@pytest.mark.asyncio
async def test_editor_refuses_to_save_incomplete_draft(editor, backend):
    for event in tap(y_at(540)):
        editor.dispatch(event)

    with pytest.raises(ValidationFailure):
        await editor.save()

    assert backend.inserted == []
    assert isinstance(editor.state, DraftActive)


@pytest.mark.asyncio
async def test_editor_resurfaces_draft_when_slot_was_taken(editor, backend):
    for event in tap(y_at(540)) + [details()]:
        editor.dispatch(event)
    draft = editor.state.draft
    backend.fail_with = ConstraintViolation("Slot already booked for this room and time.")

    with pytest.raises(ConstraintViolation):
        await editor.save()

    assert isinstance(editor.state, DraftActive)
    assert editor.state.draft == draft
    assert isinstance(editor.last_error, ConstraintViolation)
    assert editor.store.items == ()


@pytest.mark.asyncio
async def test_editor_keeps_draft_on_transport_failure(editor, backend):
    for event in tap(y_at(540)) + [details()]:
        editor.dispatch(event)
    backend.fail_with = offline()

    await editor.handle(Save())

    assert isinstance(editor.state, DraftActive)
    assert editor.last_error is backend.fail_with


@pytest.mark.asyncio
async def test_failed_save_does_not_clobber_a_tap_started_meanwhile(editor, backend):
    for event in tap(y_at(540)) + [details()]:
        editor.dispatch(event)
    release = asyncio.Event()

    async def slow_rejection(data):
        await release.wait()
        raise ConstraintViolation("Slot already booked for this room and time.")

    backend.insert = slow_rejection
    saving = asyncio.create_task(editor.handle(Save()))
    await asyncio.sleep(0)
    assert isinstance(editor.state, Idle)

    editor.dispatch(PointerDown(100, y_at(720)))
    release.set()
    await saving
    editor.dispatch(PointerUp(100, y_at(720)))

    assert isinstance(editor.state, DraftActive)
    assert editor.state.draft.start == 720
    assert isinstance(editor.last_error, ConstraintViolation)


@pytest.mark.asyncio
async def test_editor_revalidates_when_bookings_arrive(editor):
    for event in tap(y_at(540)):
        editor.dispatch(event)
    assert editor.state.valid

    editor.store.apply(Inserted(stored(570, 630)))

    assert not editor.state.valid


@pytest.mark.asyncio
async def test_editor_runs_queued_events_in_order(editor, backend):
    queue = asyncio.Queue()
    for event in tap(y_at(600)) + [details(), Save(), None]:
        queue.put_nowait(event)

    await editor.run(queue)

    assert isinstance(editor.state, Idle)
    assert [(b.start, b.end) for b in backend.inserted] == [(600, 660)]


def test_activate_checks_validity():
    draft = Draft(date=DAY, room="White", start=540, end=600)
    assert activate(draft, []).valid
    assert not activate(draft, [stored(550, 560)]).valid
