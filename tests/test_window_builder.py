import unittest

from window_builder import (
    DATA_SECTION_HEADER,
    build_data_section,
    build_window,
    compose_prompt,
    iter_windows,
)


def series(length, base=100.0):
    return [
        [3600.0 * i, base + i, base + i + 1, base + i - 1, base + i + 0.5, 10.0 + i]
        for i in range(length)
    ]


class BuildWindowTests(unittest.TestCase):
    def test_window_slices_trailing_candles(self):
        eth, btc, sol = series(30), series(30, 50000.0), series(30, 150.0)

        window = build_window(eth, btc, sol, 26, lookback=24)

        self.assertEqual(window.index, 26)
        self.assertEqual(len(window.eth), 24)
        self.assertEqual(window.eth[0], eth[2])
        self.assertEqual(window.eth[-1], eth[25])
        self.assertEqual(window.btc[-1], btc[25])
        self.assertEqual(window.sol[-1], sol[25])

    def test_short_series_is_not_eligible(self):
        eth, btc, sol = series(30), series(30), series(25)

        self.assertIsNone(build_window(eth, btc, sol, 26, lookback=24))
        self.assertIsNotNone(build_window(eth, btc, sol, 25, lookback=24))

    def test_index_below_lookback_is_rejected(self):
        with self.assertRaises(ValueError):
            build_window(series(30), series(30), series(30), 10, lookback=24)

    def test_iter_windows_skips_ineligible_indices(self):
        eth, btc, sol = series(30), series(30), series(27)

        indices = [w.index for w in iter_windows(eth, btc, sol, lookback=24)]

        self.assertEqual(indices, [24, 25, 26, 27])

    def test_iter_windows_empty_when_eth_equals_lookback(self):
        self.assertEqual(list(iter_windows(series(24), series(24), series(24), lookback=24)), [])


class DataSectionTests(unittest.TestCase):
    def test_fixed_precision_rows(self):
        eth_data = [
            [1732849200.0, 3591.36, 3603.0, 3599.99, 3594.88, 415.86094626],
            [1732845600.0, 3564.44, 3600.0, 3565.45, 3599.99, 4979.85077974],
        ]
        btc_data = [
            [1732849200.0, 50000.0, 50100.0, 49950.0, 50050.0, 2000.0],
            [1732845600.0, 50100.0, 50200.0, 50000.0, 50080.0, 1900.0],
        ]
        sol_data = [
            [1732849200.0, 150.0, 152.0, 149.5, 151.0, 10000.0],
            [1732845600.0, 151.0, 153.0, 150.0, 152.0, 8000.0],
        ]

        section = build_data_section(eth_data, btc_data, sol_data)

        self.assertTrue(section.startswith(DATA_SECTION_HEADER + "\n"))
        self.assertIn("ETH: [[1732849200.00,3591.36,3603.00,3599.99,3594.88,415.860946]", section)
        self.assertIn("BTC: [[1732849200.00,50000.00,50100.00,49950.00,50050.00,2000.000000]", section)
        self.assertIn("SOL: [[1732849200.00,150.00,152.00,149.50,151.00,10000.000000]", section)
        self.assertIn(",[1732845600.00,3564.44,3600.00,3565.45,3599.99,4979.850780]]\n", section)
        self.assertTrue(section.endswith("\n"))

    def test_same_numbers_give_identical_text(self):
        first = build_data_section(series(24), series(24, 50000.0), series(24, 150.0))
        second = build_data_section(
            [list(r) for r in series(24)],
            [tuple(r) for r in series(24, 50000.0)],
            series(24, 150.0),
        )

        self.assertEqual(first, second)

    def test_compose_prompt_appends_data_after_blank_line(self):
        prompt = compose_prompt("Base prompt", "DATA")

        self.assertEqual(prompt, "Base prompt\n\nDATA")


if __name__ == "__main__":
    unittest.main()
