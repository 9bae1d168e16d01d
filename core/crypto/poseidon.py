"""
Module 02 - Poseidon Hash
Poseidon permutation over the BN254 scalar field, circomlib-compatible.

Parameters match circomlib / circomlibjs `poseidon` and the generated
PoseidonT3 Solidity hasher:
- S-box x^5
- 8 full rounds, partial rounds per width from N_ROUNDS_P
- Round constants and the Cauchy MDS matrix drawn from the Grain LFSR
  (field=1, sbox=0, n=254), exactly as the reference parameter script does
- Initial state [0, *inputs], output state[0]

Constants are generated once per state width and cached.
"""
from __future__ import annotations

from functools import lru_cache
from typing import Sequence


SNARK_SCALAR_FIELD: int = (
    21888242871839275222246405745257275088548364400416034343698204186575808495617
)

FIELD_BITS: int = 254
N_ROUNDS_F: int = 8
# Indexed by t - 2
N_ROUNDS_P: tuple[int, ...] = (
    56, 57, 56, 60, 60, 63, 64, 63, 60, 66, 60, 65, 70, 60, 64, 68,
)

MAX_INPUTS: int = len(N_ROUNDS_P)


def _bits(value: int, width: int) -> list[int]:
    return [int(b) for b in bin(value)[2:].zfill(width)]


class GrainLFSR:
    """
    80-bit Grain LFSR in self-shrinking mode, seeded with the Poseidon
    instance description.
    """

    def __init__(self, field: int, sbox: int, n: int, t: int, r_f: int, r_p: int) -> None:
        self._state = (
            _bits(field, 2)
            + _bits(sbox, 4)
            + _bits(n, 12)
            + _bits(t, 12)
            + _bits(r_f, 10)
            + _bits(r_p, 10)
            + [1] * 30
        )
        for _ in range(160):
            self._clock()

    def _clock(self) -> int:
        s = self._state
        bit = s[62] ^ s[51] ^ s[38] ^ s[23] ^ s[13] ^ s[0]
        s.pop(0)
        s.append(bit)
        return bit

    def next_bit(self) -> int:
        # Bits come in pairs; the second is emitted only when the first is 1
        while True:
            control = self._clock()
            output = self._clock()
            if control == 1:
                return output

    def next_int(self, num_bits: int) -> int:
        value = 0
        for _ in range(num_bits):
            value = (value << 1) | self.next_bit()
        return value


@lru_cache(maxsize=None)
def poseidon_constants(t: int) -> tuple[tuple[int, ...], tuple[tuple[int, ...], ...]]:
    """
    Generate (round_constants, mds_matrix) for state width t.

    Args:
        t: State width (number of inputs + 1)

    Returns:
        Tuple of flat round constants ((R_F + R_P) * t values) and the
        t x t MDS matrix
    """
    if t < 2 or t - 2 >= len(N_ROUNDS_P):
        raise ValueError(f"Unsupported Poseidon width t={t}")

    p = SNARK_SCALAR_FIELD
    r_p = N_ROUNDS_P[t - 2]
    grain = GrainLFSR(1, 0, FIELD_BITS, t, N_ROUNDS_F, r_p)

    constants: list[int] = []
    for _ in range((N_ROUNDS_F + r_p) * t):
        value = grain.next_int(FIELD_BITS)
        while value >= p:
            value = grain.next_int(FIELD_BITS)
        constants.append(value)

    while True:
        samples = [grain.next_int(FIELD_BITS) % p for _ in range(2 * t)]
        while len(set(samples)) != len(samples):
            samples = [grain.next_int(FIELD_BITS) % p for _ in range(2 * t)]
        xs, ys = samples[:t], samples[t:]
        if any((x + y) % p == 0 for x in xs for y in ys):
            continue
        matrix = tuple(
            tuple(pow((x + y) % p, -1, p) for y in ys)
            for x in xs
        )
        return tuple(constants), matrix


def poseidon(inputs: Sequence[int]) -> int:
    """
    Poseidon hash of 1..16 field elements.

    Args:
        inputs: Field elements, each in [0, SNARK_SCALAR_FIELD)

    Returns:
        Field element digest

    Raises:
        ValueError: On empty/oversized input or non-canonical elements

    Example:
        >>> hex(poseidon([1, 2]))
        '0x115cc0f5e7d690413df64c6b9662e9cf2a3617f2743245519e19607a4417189a'
    """
    if not inputs or len(inputs) > MAX_INPUTS:
        raise ValueError(f"Poseidon takes 1..{MAX_INPUTS} inputs, got {len(inputs)}")

    p = SNARK_SCALAR_FIELD
    for value in inputs:
        if not isinstance(value, int) or value < 0 or value >= p:
            raise ValueError(f"Non-canonical field element: {value!r}")

    t = len(inputs) + 1
    r_p = N_ROUNDS_P[t - 2]
    constants, mds = poseidon_constants(t)
    half_full = N_ROUNDS_F // 2

    state = [0, *inputs]
    for r in range(N_ROUNDS_F + r_p):
        offset = r * t
        state = [(s + constants[offset + i]) % p for i, s in enumerate(state)]
        if r < half_full or r >= half_full + r_p:
            state = [pow(s, 5, p) for s in state]
        else:
            state[0] = pow(state[0], 5, p)
        state = [
            sum(m * s for m, s in zip(row, state)) % p
            for row in mds
        ]
    return state[0]


__all__ = [
    "SNARK_SCALAR_FIELD",
    "N_ROUNDS_F",
    "N_ROUNDS_P",
    "MAX_INPUTS",
    "GrainLFSR",
    "poseidon_constants",
    "poseidon",
]
