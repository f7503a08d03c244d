from mobile_runner import output_parser


def test_summary_line_wins_over_markers():
    text = "✓ one\n✓ two\n✖ three\nTests: 3 passed, 1 failed, 0 skipped, 4 total"
    counters = output_parser.parse(text)
    assert (counters.passed, counters.failed, counters.skipped, counters.total) == (3, 1, 0, 4)


def test_summary_line_without_total_sums_groups():
    counters = output_parser.parse_summary_line("Tests: 2 passed, 1 failed")
    assert counters.total == 3


def test_mocha_vocabulary_prefers_skipped_over_pending():
    counters = output_parser.parse("5 passing (12s)\n1 failing\n2 pending\n3 skipped")
    assert counters.passed == 5
    assert counters.failed == 1
    assert counters.skipped == 3
    assert counters.total == 9


def test_mocha_vocabulary_uses_pending():
    counters = output_parser.parse("4 passing\n2 pending")
    assert (counters.passed, counters.skipped, counters.total) == (4, 2, 6)


def test_marker_counting():
    counters = output_parser.parse("✓ logs in\n✓ logs out\n✗ fails to pay")
    assert (counters.passed, counters.failed, counters.total) == (2, 1, 3)


def test_unrecognised_output_assumes_single_test():
    counters = output_parser.parse("launching appium...")
    assert counters.total == 1
    assert counters.passed == 0
    assert output_parser.parse(None).total == 1


def test_current_test_skips_spec_lines():
    text = "✓ login.spec.ts\n✓ shows the dashboard (1200ms)\n"
    assert output_parser.current_test(text) == "shows the dashboard"
    assert output_parser.current_test("nothing yet") is None
