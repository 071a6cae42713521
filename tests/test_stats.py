"""Tests for vtebench.stats - per-label aggregation of samples."""

from __future__ import annotations

import math
import tempfile
import unittest
from pathlib import Path

from vtebench.stats import (
    LabelStats,
    describe,
    format_summary,
    format_summary_line,
    sample_stdev,
    summarize,
    summarize_file,
    valid_row,
    write_summary,
)

FIXTURE_ROWS = [
    ["old-abc", "1", "1.0"],
    ["old-abc", "2", "2.0"],
    ["old-abc", "3", "3.0"],
    ["new-def", "1", "5.0"],
]


# ---------------------------------------------------------------------------
# Descriptive statistics
# ---------------------------------------------------------------------------


class TestSampleStdev(unittest.TestCase):
    """Tests for sample_stdev()."""

    def test_known_value(self) -> None:
        self.assertAlmostEqual(sample_stdev([1.0, 2.0, 3.0]), 1.0, places=10)

    def test_single_value_is_exactly_zero(self) -> None:
        self.assertEqual(sample_stdev([42.0]), 0.0)

    def test_empty_is_zero(self) -> None:
        self.assertEqual(sample_stdev([]), 0.0)

    def test_identical_values(self) -> None:
        self.assertEqual(sample_stdev([2.5, 2.5, 2.5, 2.5]), 0.0)

    def test_bessel_correction(self) -> None:
        """Two values 0 and 2: population sd 1, sample sd sqrt(2)."""
        self.assertAlmostEqual(sample_stdev([0.0, 2.0]), math.sqrt(2), places=10)


class TestDescribe(unittest.TestCase):
    """Tests for describe()."""

    def test_basic(self) -> None:
        s = describe("old-abc", [1.0, 2.0, 3.0])
        self.assertEqual(s, LabelStats(label="old-abc", count=3, mean=2.0, stdev=1.0))

    def test_empty_raises(self) -> None:
        with self.assertRaises(ValueError):
            describe("old-abc", [])

    def test_to_dict(self) -> None:
        d = describe("new-def", [1.0, 2.0]).to_dict()
        self.assertEqual(d["label"], "new-def")
        self.assertEqual(d["count"], 2)
        self.assertAlmostEqual(d["mean"], 1.5)


# ---------------------------------------------------------------------------
# Row validation and summarizing
# ---------------------------------------------------------------------------


class TestValidRow(unittest.TestCase):
    """Tests for valid_row()."""

    def test_valid(self) -> None:
        self.assertTrue(valid_row(["old-abc", "1", "1.25"]))
        self.assertTrue(valid_row(["new-1234567", "12", "30"]))

    def test_too_few_fields(self) -> None:
        self.assertFalse(valid_row(["old-abc", "1"]))
        self.assertFalse(valid_row([]))

    def test_unexpected_label(self) -> None:
        self.assertFalse(valid_row(["label", "run", "elapsed_s"]))
        self.assertFalse(valid_row(["mid-abc", "1", "1.0"]))

    def test_non_numeric_elapsed(self) -> None:
        for bad in ("NaN", "", "-1.0", "1e3", "inf", "1.", ".5"):
            with self.subTest(elapsed=bad):
                self.assertFalse(valid_row(["old-abc", "1", bad]))


class TestSummarize(unittest.TestCase):
    """Tests for summarize()."""

    def test_fixture(self) -> None:
        stats = summarize(FIXTURE_ROWS)
        self.assertEqual(list(stats), ["new-def", "old-abc"])
        self.assertEqual(stats["old-abc"].count, 3)
        self.assertAlmostEqual(stats["old-abc"].mean, 2.0)
        self.assertAlmostEqual(stats["old-abc"].stdev, 1.0)
        self.assertEqual(stats["new-def"].count, 1)
        self.assertAlmostEqual(stats["new-def"].mean, 5.0)
        self.assertEqual(stats["new-def"].stdev, 0.0)

    def test_nan_row_skipped(self) -> None:
        rows = [*FIXTURE_ROWS, ["old-abc", "4", "NaN"]]
        self.assertEqual(summarize(rows), summarize(FIXTURE_ROWS))

    def test_short_row_skipped(self) -> None:
        rows = [*FIXTURE_ROWS, ["new-def", "2"]]
        self.assertEqual(summarize(rows)["new-def"].count, 1)

    def test_idempotent(self) -> None:
        self.assertEqual(summarize(FIXTURE_ROWS), summarize(FIXTURE_ROWS))

    def test_accepts_generator(self) -> None:
        stats = summarize(row for row in FIXTURE_ROWS)
        self.assertEqual(len(stats), 2)

    def test_empty(self) -> None:
        self.assertEqual(summarize([]), {})

    def test_stdev_never_negative_or_nan(self) -> None:
        rows = [["old-x", str(i), "0.1"] for i in range(1, 8)]
        sd = summarize(rows)["old-x"].stdev
        self.assertFalse(math.isnan(sd))
        self.assertGreaterEqual(sd, 0.0)


# ---------------------------------------------------------------------------
# Summary rendering
# ---------------------------------------------------------------------------


class TestFormatSummary(unittest.TestCase):
    """Tests for format_summary() and write_summary()."""

    def test_line_format(self) -> None:
        line = format_summary_line(LabelStats("old-abc", 3, 2.0, 1.0))
        self.assertEqual(line, "old-abc runs=3 mean=2.0000s sd=1.0000s")

    def test_sorted_output(self) -> None:
        text = format_summary(summarize(FIXTURE_ROWS))
        self.assertEqual(
            text,
            "new-def runs=1 mean=5.0000s sd=0.0000s\n"
            "old-abc runs=3 mean=2.0000s sd=1.0000s\n",
        )

    def test_sorting_ignores_insertion_order(self) -> None:
        stats = {
            "old-b": LabelStats("old-b", 1, 1.0, 0.0),
            "new-a": LabelStats("new-a", 1, 1.0, 0.0),
        }
        lines = format_summary(stats).splitlines()
        self.assertTrue(lines[0].startswith("new-a "))

    def test_empty(self) -> None:
        self.assertEqual(format_summary({}), "")

    def test_write_and_summarize_file(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            csv_path = Path(tmpdir) / "samples.csv"
            csv_path.write_text(
                "label,run,elapsed_s\n"
                + "".join(",".join(r) + "\n" for r in FIXTURE_ROWS)
                + "old-abc,4,NaN\n"
            )
            stats = summarize_file(csv_path)
            out = write_summary(Path(tmpdir) / "summary.txt", stats)
            self.assertEqual(out.read_text(), format_summary(summarize(FIXTURE_ROWS)))


if __name__ == "__main__":
    unittest.main()
