"""
Debug session controller tests: state machine, breakpoints, pause,
step caps, reset, undo and snapshots.
"""
import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import dataclasses

import pytest
from v8sim.config import MachineConfig
from v8sim.cpu.regs import FL_Z
from v8sim.errors import (
    AddressOutOfBounds, AssemblyError, ImageTooLarge, InvalidTransition, MalformedHexToken,
)
from v8sim.image import ProgramImage
from v8sim.isa import DEFAULT_TABLE, SHAPE_NONE, InstructionSpec, InstructionTable
from v8sim.loaders import load_hex
from v8sim.session import ExecutionState, PauseReason, new_session

SCENARIO = "2010 2101 2C00 2201 B210 5CC2 5221 B006 C000"

# R1 counts 1..5; halts with PC=6 after 14 instructions
COUNT = """
        LOADB R0, 5         ; limit
        LOADB R1, 0         ; counter
        LOADB R2, 1
loop:   ADDI R1, R1, R2     ; 3
        JUMPL R1, loop      ; 4: again while R1 < R0
        HALT                ; 5
"""

FAULTY = """
        LOADM R2, ptr
        STOREP R1, R2
        HALT
ptr:    DW 0x1FF
"""


def _count():
    return new_session('assembly', COUNT)


class TestLoading:

    def test_scenario_loads_ready(self):
        session = new_session('hex', SCENARIO)
        snap = session.snapshot()
        assert snap.state is ExecutionState.READY
        assert snap.pc == 0
        assert snap.registers == (0,) * 16
        assert snap.flags == 0
        assert len(snap.memory_view) == 256
        assert snap.memory_view[:9] == load_hex(SCENARIO).words
        assert all(w == 0 for w in snap.memory_view[9:])
        assert snap.last_outcome is None
        assert snap.error is None
        assert snap.breakpoints == frozenset()
        assert snap.steps == 0

    def test_bad_input_raises(self):
        with pytest.raises(MalformedHexToken):
            new_session('hex', "2010 nope")
        with pytest.raises(AssemblyError):
            new_session('assembly', "FROB R1")

    def test_instruction_text(self):
        assert new_session('hex', SCENARIO).snapshot().instruction == 'LOADB R0, 0x10'


class TestStepping:

    def test_step_pauses(self):
        session = _count()
        assert session.step() is ExecutionState.PAUSED
        assert session.snapshot().pc == 1
        assert session.pause_reason is PauseReason.STEP

    def test_scenario_nine_steps(self):
        session = new_session('hex', SCENARIO)
        for _ in range(9):
            session.step()
        snap = session.snapshot()
        assert snap.state is ExecutionState.PAUSED
        assert snap.pc == 7
        assert snap.registers[0x0] == 0x10
        assert snap.registers[0x1] == 1
        assert snap.registers[0x2] == 3
        assert snap.registers[0xC] == 1
        assert snap.steps == 9

    def test_single_step_ignores_breakpoints(self):
        session = _count()
        session.toggle_breakpoint(0)
        session.step()
        assert session.snapshot().pc == 1

    def test_step_to_halt_then_refuse(self):
        session = _count()
        for _ in range(14):
            session.step()
        assert session.state is ExecutionState.HALTED
        assert session.last_outcome.halted
        before = session.snapshot()
        with pytest.raises(InvalidTransition):
            session.step()
        assert session.snapshot() == before


class TestRun:

    def test_run_to_halt(self):
        session = _count()
        assert session.run() is ExecutionState.HALTED
        snap = session.snapshot()
        assert snap.registers[1] == 5
        assert snap.pc == 6
        assert snap.flags == FL_Z
        assert snap.steps == 14

    def test_breakpoint_pauses_before_instruction(self):
        session = _count()
        assert session.toggle_breakpoint(4) is True
        assert session.run() is ExecutionState.PAUSED
        snap = session.snapshot()
        assert snap.pc == 4
        assert snap.registers[1] == 1
        assert snap.pause_reason is PauseReason.BREAKPOINT

    def test_resume_moves_past_breakpoint(self):
        session = _count()
        session.toggle_breakpoint(4)
        session.run()
        assert session.resume() is ExecutionState.PAUSED
        snap = session.snapshot()
        assert snap.pc == 4
        assert snap.registers[1] == 2

    def test_cleared_breakpoint_passes(self):
        session = _count()
        session.toggle_breakpoint(4)
        session.run()
        assert session.toggle_breakpoint(4) is False
        assert session.resume() is ExecutionState.HALTED
        assert session.snapshot().registers[1] == 5

    def test_breakpoint_at_entry(self):
        session = _count()
        session.toggle_breakpoint(0)
        assert session.run() is ExecutionState.PAUSED
        assert session.snapshot().pc == 0
        assert session.snapshot().steps == 0

    def test_max_steps(self):
        session = _count()
        assert session.run(max_steps=3) is ExecutionState.PAUSED
        assert session.pause_reason is PauseReason.STEP_LIMIT
        assert session.snapshot().steps == 3
        assert session.snapshot().pc == 3

    def test_max_steps_must_be_positive(self):
        with pytest.raises(ValueError):
            _count().run(max_steps=0)

    def test_step_limit_from_config(self):
        session = new_session('assembly', COUNT, MachineConfig(run_step_limit=2))
        assert session.run() is ExecutionState.PAUSED
        assert session.snapshot().steps == 2

    def test_should_pause(self):
        session = _count()
        polls = []

        def should_pause():
            polls.append(1)
            return len(polls) > 3

        assert session.run(should_pause=should_pause) is ExecutionState.PAUSED
        assert session.snapshot().steps == 3
        assert session.pause_reason is PauseReason.REQUESTED

    def test_pause_from_callback(self):
        session = _count()
        polls = []

        def on_poll():
            polls.append(1)
            if len(polls) == 3:
                assert session.state is ExecutionState.RUNNING
                session.pause()
            return False

        assert session.run(should_pause=on_poll) is ExecutionState.PAUSED
        assert session.snapshot().steps == 2

    def test_pause_outside_run_is_noop(self):
        session = _count()
        assert session.pause() is False
        assert session.state is ExecutionState.READY
        assert session.run() is ExecutionState.HALTED

    def test_endless_loop_is_interruptible(self):
        session = new_session('hex', SCENARIO)
        assert session.run(max_steps=1000) is ExecutionState.PAUSED
        assert session.snapshot().pc in (6, 7)

    def test_raising_callback_leaves_session_paused(self):
        session = _count()
        polls = []

        def interrupt():
            polls.append(1)
            if len(polls) == 3:
                raise KeyboardInterrupt
            return False

        with pytest.raises(KeyboardInterrupt):
            session.run(should_pause=interrupt)
        assert session.state is ExecutionState.PAUSED
        assert session.pause_reason is PauseReason.REQUESTED
        assert session.snapshot().steps == 2
        assert session.reset() is ExecutionState.READY
        assert session.run() is ExecutionState.HALTED

    def test_raising_semantics_leaves_session_paused(self):
        def op_boom(m, ops):
            raise RuntimeError("boom")

        table = InstructionTable(
            list(DEFAULT_TABLE.without(0x0))
            + [InstructionSpec(0x0, 'BOOM', SHAPE_NONE, op_boom)])
        session = new_session('hex', "2101 0000 C000", table=table)
        with pytest.raises(RuntimeError):
            session.run()
        snap = session.snapshot()
        assert snap.state is ExecutionState.PAUSED
        assert snap.pc == 1
        assert snap.registers[1] == 1
        assert session.reset() is ExecutionState.READY

    def test_resume_needs_paused(self):
        with pytest.raises(InvalidTransition):
            _count().resume()


class TestFaulted:

    def test_fault_is_terminal(self):
        session = new_session('assembly', FAULTY)
        assert session.run() is ExecutionState.FAULTED
        snap = session.snapshot()
        assert isinstance(snap.error, AddressOutOfBounds)
        assert snap.error.address == 0x1FF
        assert snap.last_outcome.faulted
        for op in (session.step, session.run, session.undo, session.resume):
            with pytest.raises(InvalidTransition):
                op()
        assert session.state is ExecutionState.FAULTED

    def test_reset_clears_fault(self):
        session = new_session('assembly', FAULTY)
        session.run()
        assert session.reset() is ExecutionState.READY
        assert session.error is None
        assert session.snapshot().pc == 0


class TestReset:

    def test_reset_after_halt_keeps_breakpoints(self):
        session = _count()
        session.run()
        session.toggle_breakpoint(2)
        session.reset()
        snap = session.snapshot()
        assert snap.state is ExecutionState.READY
        assert snap.registers == (0,) * 16
        assert snap.breakpoints == frozenset({2})
        assert snap.last_outcome is None

    def test_reset_with_new_image(self):
        session = _count()
        session.run()
        session.reset(load_hex("C000"))
        assert session.snapshot().memory_view[0] == 0xC000
        assert session.run() is ExecutionState.HALTED
        assert session.snapshot().steps == 1

    def test_oversized_image_leaves_session_alone(self):
        session = _count()
        session.step()
        with pytest.raises(ImageTooLarge):
            session.reset(ProgramImage((0,) * 300))
        assert session.state is ExecutionState.PAUSED
        assert session.snapshot().pc == 1


class TestBreakpoints:

    def test_toggle(self):
        session = _count()
        assert session.toggle_breakpoint(0x10) is True
        assert session.breakpoints == frozenset({0x10})
        assert session.toggle_breakpoint(0x10) is False
        assert session.breakpoints == frozenset()

    def test_out_of_range(self):
        session = _count()
        with pytest.raises(ValueError):
            session.toggle_breakpoint(256)
        with pytest.raises(ValueError):
            session.toggle_breakpoint(-1)

    def test_toggle_never_changes_state(self):
        session = _count()
        session.run()
        session.toggle_breakpoint(1)
        assert session.state is ExecutionState.HALTED


class TestUndo:

    def test_undo_back_to_ready(self):
        session = _count()
        session.step()
        session.step()
        assert session.undo() is True
        assert session.state is ExecutionState.PAUSED
        assert session.pause_reason is PauseReason.UNDO
        assert session.snapshot().pc == 1
        assert session.undo() is True
        assert session.state is ExecutionState.READY
        assert session.snapshot().pc == 0
        assert session.undo() is False
        assert session.state is ExecutionState.READY

    def test_undo_after_halt_refused(self):
        session = _count()
        session.run()
        with pytest.raises(InvalidTransition):
            session.undo()


class TestSnapshot:

    def test_frozen(self):
        snap = _count().snapshot()
        with pytest.raises(dataclasses.FrozenInstanceError):
            snap.pc = 3
        assert isinstance(snap.registers, tuple)
        assert isinstance(snap.memory_view, tuple)

    def test_snapshot_does_not_track_later_steps(self):
        session = _count()
        snap = session.snapshot()
        session.step()
        assert snap.pc == 0
        assert snap.state is ExecutionState.READY

    def test_last_write(self):
        session = new_session('assembly', "LOADB R1, 4\nSTOREM R1, 0x30\nHALT")
        session.step()
        assert session.snapshot().last_write == ('reg', 1)
        session.step()
        assert session.snapshot().last_write == ('mem', 0x30)

    def test_flag_bits(self):
        session = _count()
        session.run()
        bits = session.snapshot().flag_bits
        assert bits == {'zero': True, 'carry': False, 'sign': False, 'overflow': False}
