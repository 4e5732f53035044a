import unittest

from retailops.services.scanner import BarcodeScanBuffer


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now

    def advance(self, ms: float):
        self.now += ms / 1000.0


class BarcodeScanBufferTests(unittest.TestCase):
    def setUp(self):
        self.clock = FakeClock()
        self.scanner = BarcodeScanBuffer(idle_timeout_ms=100, clock=self.clock)

    def _type(self, text: str, gap_ms: float = 5):
        for ch in text:
            self.assertIsNone(self.scanner.feed(ch))
            self.clock.advance(gap_ms)

    def test_enter_completes_barcode(self):
        self._type("BATCH1-1")
        self.assertEqual(self.scanner.feed("Enter"), "BATCH1-1")
        self.assertEqual(self.scanner.pending, "")

    def test_newline_and_carriage_return(self):
        self._type("A1")
        self.assertEqual(self.scanner.feed("\n"), "A1")
        self._type("B2")
        self.assertEqual(self.scanner.feed("\r"), "B2")

    def test_idle_gap_discards_partial_input(self):
        self._type("STALE")
        self.clock.advance(250)
        self._type("FRESH-7")
        self.assertEqual(self.scanner.feed("\n"), "FRESH-7")

    def test_gap_within_timeout_keeps_input(self):
        self._type("AB", gap_ms=90)
        self._type("CD", gap_ms=90)
        self.assertEqual(self.scanner.feed("\n"), "ABCD")

    def test_empty_enter_returns_none(self):
        self.assertIsNone(self.scanner.feed("\n"))

    def test_feed_many_returns_each_code(self):
        codes = self.scanner.feed_many("X-1\nY-2\n\nZ")
        self.assertEqual(codes, ["X-1", "Y-2"])
        self.assertEqual(self.scanner.pending, "Z")

    def test_reset(self):
        self._type("PART")
        self.scanner.reset()
        self.assertEqual(self.scanner.pending, "")


if __name__ == "__main__":
    unittest.main()
