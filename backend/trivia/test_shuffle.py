from __future__ import annotations

import os
import subprocess
import sys
from pathlib import Path
from unittest import TestCase

from .shuffle import hash_seed, seeded_generator, shuffle_options, shuffle_order, shuffled_correct_index

REPO_ROOT = Path(__file__).resolve().parents[2]


class ShuffleOrderTests(TestCase):
    def test_same_inputs_give_same_order(self):
        self.assertEqual(shuffle_order(6, "ABCD", 3), shuffle_order(6, "ABCD", 3))

    def test_order_is_a_permutation(self):
        for count in range(2, 9):
            with self.subTest(count=count):
                self.assertEqual(sorted(shuffle_order(count, "WXYZ", count)), list(range(count)))

    def test_short_lists_are_left_alone(self):
        self.assertEqual(shuffle_order(0, "ABCD", 0), [])
        self.assertEqual(shuffle_order(1, "ABCD", 0), [0])

    def test_code_case_does_not_matter(self):
        self.assertEqual(shuffle_order(5, "abcd", 2), shuffle_order(5, "ABCD", 2))

    def test_order_varies_between_questions(self):
        orders = {tuple(shuffle_order(4, "ABCD", i)) for i in range(12)}
        self.assertGreater(len(orders), 1)

    def test_options_follow_the_order(self):
        options = ["Paris", "Rome", "Berlin", "Madrid"]
        order = shuffle_order(len(options), "ABCD", 0)

        self.assertEqual(shuffle_options(options, "ABCD", 0), [options[i] for i in order])

    def test_correct_index_maps_into_display_position(self):
        options = ["Paris", "Rome", "Berlin", "Madrid"]
        shuffled = shuffle_options(options, "ABCD", 1)

        position = shuffled_correct_index(2, len(options), "ABCD", 1)

        self.assertEqual(shuffled[position], "Berlin")
        self.assertIsNone(shuffled_correct_index(None, 4, "ABCD", 1))
        self.assertIsNone(shuffled_correct_index(7, 4, "ABCD", 1))


class SeedTests(TestCase):
    def test_seed_fits_in_31_bits(self):
        for code in ("ABCD", "ZZZZ", "A" * 40):
            self.assertLessEqual(hash_seed(code, 999), 0x7FFFFFFF)

    def test_djb2_of_short_input(self):
        # djb2("A:0") = ((5381 * 33 + 65) * 33 + 58) * 33 + 48
        expected = ((5381 * 33 + 65) * 33 + 58) * 33 + 48
        self.assertEqual(hash_seed("a", 0), expected & 0x7FFFFFFF)

    def test_generator_is_the_classic_lcg(self):
        next_value = seeded_generator(1)
        first = next_value()

        self.assertEqual(first, (1103515245 + 12345) & 0x7FFFFFFF)
        self.assertEqual(next_value(), (first * 1103515245 + 12345) & 0x7FFFFFFF)

    def test_order_is_stable_across_processes(self):
        script = "from backend.trivia.shuffle import shuffle_order; print(shuffle_order(8, 'QRST', 4))"
        outputs = set()
        for hash_seed_value in ("1", "2"):
            env = dict(os.environ, PYTHONHASHSEED=hash_seed_value)
            result = subprocess.run(
                [sys.executable, "-c", script],
                cwd=REPO_ROOT,
                env=env,
                capture_output=True,
                text=True,
                check=True,
            )
            outputs.add(result.stdout.strip())

        self.assertEqual(outputs, {str(shuffle_order(8, "QRST", 4))})
