"""Tests for challenge generation and solution verification."""

import hashlib

import pytest

from faucet.services.pow_service import (
    compute_solution,
    create_challenge,
    determine_rounds_required,
    generate_challenge_token,
    solve_challenge,
    verify_solution,
)


@pytest.fixture
def production_rounds(monkeypatch, pow_settings):
    """Default deployment values: 1..6000 amount, 1..550 rounds (66 with captcha)."""
    monkeypatch.setattr(pow_settings, "min_amount", 1)
    monkeypatch.setattr(pow_settings, "max_amount", 6000)
    monkeypatch.setattr(pow_settings, "min_challenges", 1)
    monkeypatch.setattr(pow_settings, "max_challenges", 550)
    monkeypatch.setattr(pow_settings, "max_challenges_with_captcha", 66)
    monkeypatch.setattr(pow_settings, "difficulty", 4)
    return pow_settings


class TestDetermineRoundsRequired:
    def test_max_amount_without_captcha(self, production_rounds):
        assert determine_rounds_required(6000, captcha_used=False) == 550

    def test_max_amount_with_captcha(self, production_rounds):
        assert determine_rounds_required(6000, captcha_used=True) == 66

    def test_min_amount_yields_min_rounds(self, production_rounds):
        assert determine_rounds_required(1, captcha_used=False) == 1
        assert determine_rounds_required(1, captcha_used=True) == 1

    def test_fractional_proportion_rounds_up(self, production_rounds):
        # (2 - 1) / 5999 * 549 + 1 = 1.09... -> 2
        assert determine_rounds_required(2, captcha_used=False) == 2

    def test_midpoint(self, production_rounds):
        # 0.5 * 549 + 1 = 275.5 -> 276
        assert determine_rounds_required(3000.5, captcha_used=False) == 276

    def test_equal_bounds_return_max_rounds(self, production_rounds, monkeypatch):
        monkeypatch.setattr(production_rounds, "min_amount", 50)
        monkeypatch.setattr(production_rounds, "max_amount", 50)

        assert determine_rounds_required(50, captcha_used=False) == 550
        assert determine_rounds_required(50, captcha_used=True) == 66

    @pytest.mark.parametrize("captcha_used,ceiling", [(False, 550), (True, 66)])
    def test_monotonic_and_bounded(self, production_rounds, captcha_used, ceiling):
        previous = 0
        for amount in range(1, 6001, 37):
            rounds = determine_rounds_required(amount, captcha_used)
            assert 1 <= rounds <= ceiling
            assert rounds >= previous
            previous = rounds


class TestCreateChallenge:
    def test_token_is_hex_of_configured_size(self, pow_settings):
        challenge = create_challenge(50, captcha_used=False)

        assert len(challenge.challenge_token) == 2 * pow_settings.challenge_size
        int(challenge.challenge_token, 16)

    def test_difficulty_comes_from_settings(self, pow_settings, monkeypatch):
        monkeypatch.setattr(pow_settings, "difficulty", 3)

        assert create_challenge(1, captcha_used=False).difficulty == 3
        assert create_challenge(100, captcha_used=True).difficulty == 3

    def test_tokens_are_unique(self):
        tokens = {generate_challenge_token(16) for _ in range(200)}
        assert len(tokens) == 200

    def test_default_size_is_2048_bytes(self):
        assert len(generate_challenge_token(2048)) == 4096


class TestVerifySolution:
    def test_solution_with_enough_leading_zeros(self):
        nonce, solution = solve_challenge("abc123", 4)

        assert solution.startswith("0000")
        assert verify_solution("abc123", nonce, 4, solution) is True

    def test_three_leading_zeros_fail_at_difficulty_four(self):
        nonce = 0
        while True:
            digest = compute_solution("abc123", nonce)
            if digest.startswith("000") and not digest.startswith("0000"):
                break
            nonce += 1

        assert verify_solution("abc123", nonce, 4, digest) is False
        assert verify_solution("abc123", nonce, 3, digest) is True

    def test_solution_must_match_hash(self):
        nonce, solution = solve_challenge("abc123", 2)
        tampered = solution[:-1] + ("0" if solution[-1] != "0" else "1")

        assert verify_solution("abc123", nonce, 2, tampered) is False

    def test_nonce_must_match(self):
        nonce, solution = solve_challenge("abc123", 1)

        assert verify_solution("abc123", nonce + 1, 1, solution) is False

    def test_string_and_int_nonce_agree(self):
        nonce, solution = solve_challenge("abc123", 1)

        assert verify_solution("abc123", str(nonce), 1, solution) is True

    def test_difficulty_zero_only_needs_hash_match(self):
        solution = compute_solution("abc123", 42)

        assert verify_solution("abc123", 42, 0, solution) is True

    def test_is_deterministic(self):
        nonce, solution = solve_challenge("deadbeef", 2)

        results = {verify_solution("deadbeef", nonce, 2, solution) for _ in range(10)}
        assert results == {True}

    def test_hash_preimage_format(self):
        assert compute_solution("tok", 7) == hashlib.sha256(b"tok:7").hexdigest()
