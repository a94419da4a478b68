"""Tests for the loop profiler."""

import io
import logging

import pytest

from interpreter import EnterLoop, LeaveLoop, PointerUnderflowError
from optimizer import optimize
from parser import Loop, parse_source
from profiler import Count, Profiler, ProfilerSyncError


def profile(harness, source, data=()):
    program = parse_source(source)
    profiler = Profiler(program)
    h = harness(data)
    h.run(program, profiler.on_step)
    return profiler, h


class TestRecordTree:

    def test_shape_mirrors_loop_nesting(self):
        profiler = Profiler(parse_source("[[][[]]]+[]"))
        root = profiler.map
        assert len(root.children) == 2
        assert len(root.children[0].children) == 2
        assert len(root.children[0].children[1].children) == 1
        assert root.children[1].children == []

    def test_starts_at_root_with_zero_counts(self):
        profiler = Profiler(parse_source("[-]"))
        assert profiler.cursor == ()
        assert profiler.map.get() is profiler.map
        assert profiler.map.children[0].iterations == 0


class TestTracking:

    def test_single_loop(self, harness):
        profiler, h = profile(harness, "++[-].")
        assert h.output == [0]
        count = profiler.count()
        assert count.children[0].iterations == 2
        assert count.children[0].oe_total == 2

    def test_cursor_returns_to_root(self, harness):
        profiler, _ = profile(harness, "+[>+[-]<-]")
        assert profiler.cursor == ()
        assert profiler.map.get() is profiler.map
        assert profiler.map.state is None

    def test_nested_loop_accumulates_across_outer_iterations(self, harness):
        # outer runs 3 times, the inner loop moves 2 units each time
        profiler, _ = profile(harness, "+++[>++[>+<-]<-]")
        outer = profiler.map.children[0]
        inner = outer.children[0]
        assert outer.iterations == 3
        assert inner.iterations == 6
        assert inner.executed == 6 * 4
        assert outer.executed == 3 * 5 + inner.executed

    def test_sibling_loops_inside_a_loop(self, harness):
        profiler, _ = profile(harness, "++[>+[-]>+[-]<<-]")
        outer = profiler.map.children[0]
        assert outer.iterations == 2
        assert [child.iterations for child in outer.children] == [2, 2]

    def test_zero_iteration_loops_are_still_tracked(self, harness):
        profiler, _ = profile(harness, "[[-]][-]+[[-]>]")
        root = profiler.map
        assert [child.iterations for child in root.children] == [0, 0, 1]
        assert root.children[2].children[0].iterations == 1

    def test_count_matches_engine_totals(self, harness):
        source = "++++++++[>++++[>++>+++>+++>+<<<<-]>+>+>->>+[<]<-]>>.>---.+++++++..+++."
        profiler, h = profile(harness, source)
        count = profiler.count()
        assert count.oc + count.oe_total == h.interpreter.counter

        def check(record, count):
            assert count.oe_total == record.executed
            for child_record, child_count in zip(record.children, count.children):
                check(child_record, child_count)

        for record, child in zip(profiler.map.children, count.children):
            check(record, child)

    def test_optimized_program(self, harness):
        program = optimize(parse_source("+++[>++[>+<-]<-]"))
        profiler = Profiler(program)
        h = harness()
        h.run(program, profiler.on_step)
        count = profiler.count()
        assert count.children[0].iterations == 3
        assert count.children[0].children[0].iterations == 6
        assert count.oc + count.oe_total == h.interpreter.counter

    def test_events_logged_with_cursor_at_debug(self, harness, caplog):
        caplog.set_level(logging.DEBUG, logger="profiler")
        profile(harness, "+[-]")
        assert "cursor=()" in caplog.text
        assert "cursor=(0,)" in caplog.text

    def test_events_not_logged_above_debug(self, harness, caplog):
        caplog.set_level(logging.INFO, logger="profiler")
        profile(harness, "+[-]")
        assert "Profiler.on_step" not in caplog.text


class TestSynchronization:

    def test_leave_without_enter(self):
        profiler = Profiler(parse_source("[-]"))
        with pytest.raises(ProfilerSyncError):
            profiler.on_step(LeaveLoop((0,), 0, 0))

    def test_enter_without_loop(self):
        profiler = Profiler(parse_source("+-"))
        with pytest.raises(ProfilerSyncError):
            profiler.on_step(EnterLoop((0,)))

    def test_path_mismatch(self):
        profiler = Profiler(parse_source("[][]"))
        with pytest.raises(ProfilerSyncError):
            profiler.on_step(EnterLoop((1,)))

    def test_leave_with_pending_nested_loop(self):
        profiler = Profiler(parse_source("[[][]]"))
        profiler.on_step(EnterLoop((0,)))
        profiler.on_step(EnterLoop((0, 0)))
        profiler.on_step(LeaveLoop((0, 0), 0, 0))
        with pytest.raises(ProfilerSyncError):
            profiler.on_step(LeaveLoop((0,), 0, 1))

    def test_unknown_event(self):
        profiler = Profiler(parse_source("[]"))
        with pytest.raises(ProfilerSyncError):
            profiler.on_step("enter")

    def test_fault_propagates_out_of_execution(self, harness):
        profiler = Profiler(parse_source("+"))
        h = harness()
        with pytest.raises(ProfilerSyncError):
            h.run(parse_source("+[-]"), profiler.on_step)


class TestCount:

    def test_oc_excludes_nested_bodies(self):
        program = parse_source("+[->[-]<]")
        profiler = Profiler(program)
        count = Count.build(profiler.map, program)
        assert count.oc == 1
        assert count.children[0].oc == 3
        assert count.children[0].children[0].oc == 1

    def test_reported_total_must_match_counted_total(self):
        profiler = Profiler(parse_source("[-]"))
        profiler.on_step(EnterLoop((0,)))
        profiler.on_step(LeaveLoop((0,), 5, 2))
        with pytest.raises(ProfilerSyncError):
            profiler.count()

    def test_nested_reported_total_is_checked(self):
        profiler = Profiler(parse_source("[>[-]<]"))
        profiler.on_step(EnterLoop((0,)))
        profiler.on_step(EnterLoop((0, 0)))
        profiler.on_step(LeaveLoop((0, 0), 3, 3))
        profiler.on_step(LeaveLoop((0,), 6, 1))
        with pytest.raises(ProfilerSyncError):
            profiler.count()

    def test_aborted_run_is_counted_without_check(self, harness):
        source = "+[>+[<<]]"
        profiler = Profiler(parse_source(source))
        with pytest.raises(PointerUnderflowError):
            harness().run(parse_source(source), profiler.on_step)
        count = profiler.count()
        assert count.oc == 1
        assert count.children[0].iterations == 0
        assert count.children[0].children[0].iterations == 0


class TestReport:

    def test_format(self, harness):
        profiler, _ = profile(harness, "++[-].")
        assert profiler.render() == (
            "Instructions executed: 5\n"
            "Increment(1)\n"
            "Increment(1)\n"
            "Loop 2 iterations 2 instr (40.0000 % total)\n"
            "  Decrement(1)\n"
            "WriteByte\n"
        )

    def test_nested_indentation(self, harness):
        profiler, _ = profile(harness, "+[>+[-]<-]")
        lines = profiler.render().splitlines()
        assert lines[0] == "Instructions executed: 6"
        assert lines[2] == "Loop 1 iterations 5 instr (83.3333 % total)"
        assert lines[3] == "  MoveRight(1)"
        assert lines[5] == "  Loop 1 iterations 1 instr (16.6667 % total)"
        assert lines[6] == "    Decrement(1)"
        assert lines[7] == "  MoveLeft(1)"

    def test_empty_run_reports_zero_percent(self, harness):
        profiler, _ = profile(harness, "[-]")
        assert profiler.render() == (
            "Instructions executed: 0\n"
            "Loop 0 iterations 0 instr (0.0000 % total)\n"
            "  Decrement(1)\n"
        )

    def test_print_report_writes_to_stream(self, harness):
        profiler, _ = profile(harness, "+")
        stream = io.StringIO()
        profiler.print_report(stream)
        assert stream.getvalue() == "Instructions executed: 1\nIncrement(1)\n"

    def test_listing_reflects_optimized_program(self, harness):
        program = optimize(parse_source("+++[-]"))
        profiler = Profiler(program)
        harness().run(program, profiler.on_step)
        assert profiler.render().splitlines()[1] == "Increment(3)"
        assert isinstance(program.opcodes[1], Loop)
