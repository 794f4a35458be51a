"""Tests for GF(2^61 - 1) arithmetic."""

import unittest

from octomil_secagg import field
from octomil_secagg.errors import DomainError
from octomil_secagg.field import FIELD_PRIME


class FieldConstantsTests(unittest.TestCase):
    def test_prime_is_mersenne_61(self):
        self.assertEqual(FIELD_PRIME, 2**61 - 1)
        self.assertEqual(FIELD_PRIME, 2305843009213693951)

    def test_is_canonical(self):
        self.assertTrue(field.is_canonical(0))
        self.assertTrue(field.is_canonical(FIELD_PRIME - 1))
        self.assertFalse(field.is_canonical(FIELD_PRIME))
        self.assertFalse(field.is_canonical(-1))


class FieldArithmeticTests(unittest.TestCase):
    def test_add_wraps(self):
        self.assertEqual(field.add(FIELD_PRIME - 1, 1), 0)
        self.assertEqual(field.add(FIELD_PRIME - 1, FIELD_PRIME - 1), FIELD_PRIME - 2)
        self.assertEqual(field.add(3, 4), 7)

    def test_sub_wraps(self):
        self.assertEqual(field.sub(0, 1), FIELD_PRIME - 1)
        self.assertEqual(field.sub(10, 3), 7)

    def test_neg(self):
        self.assertEqual(field.neg(0), 0)
        self.assertEqual(field.add(field.neg(12345), 12345), 0)

    def test_mul_matches_python_modulo(self):
        samples = [
            (FIELD_PRIME - 1, FIELD_PRIME - 1),
            (FIELD_PRIME - 1, 2),
            (2**60, 2**60),
            (123456789012345, 987654321098765),
            (0, FIELD_PRIME - 1),
        ]
        for a, b in samples:
            self.assertEqual(field.mul(a, b), (a * b) % FIELD_PRIME)

    def test_power(self):
        self.assertEqual(field.power(2, 61), 1)
        self.assertEqual(field.power(7, 0), 1)
        self.assertEqual(field.power(3, 5), 243)

    def test_power_negative_exponent_raises(self):
        with self.assertRaises(DomainError):
            field.power(3, -1)

    def test_inverse(self):
        for a in (1, 2, 12345, FIELD_PRIME - 1):
            self.assertEqual(field.mul(a, field.inverse(a)), 1)

    def test_inverse_of_zero_raises(self):
        with self.assertRaises(DomainError):
            field.inverse(0)

    def test_div(self):
        self.assertEqual(field.div(field.mul(42, 17), 17), 42)

    def test_reduce(self):
        self.assertEqual(field.reduce(FIELD_PRIME), 0)
        self.assertEqual(field.reduce(FIELD_PRIME + 5), 5)
        self.assertEqual(field.reduce(2**64 - 1), (2**64 - 1) % FIELD_PRIME)
        self.assertEqual(field.reduce(2**130 + 7), (2**130 + 7) % FIELD_PRIME)

    def test_reduce_negative_raises(self):
        with self.assertRaises(DomainError):
            field.reduce(-1)

    def test_random_element_is_canonical(self):
        for _ in range(100):
            self.assertTrue(field.is_canonical(field.random_element()))


if __name__ == "__main__":
    unittest.main()
