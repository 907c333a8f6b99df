"""Tests for PKCE pair generation."""

from __future__ import annotations

import hashlib

from base64 import urlsafe_b64encode

import pytest

from authflow.pkce import PKCEPair, s256


class TestPKCEPair:
    """Tests for PKCEPair."""

    def test_challenge_matches_verifier(self) -> None:
        pair = PKCEPair.generate()
        digest = hashlib.sha256(pair.verifier.encode("ascii")).digest()
        expected = urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")
        assert pair.challenge == expected
        assert pair.method == "S256"

    def test_verifier_length(self) -> None:
        assert len(PKCEPair.generate().verifier) == 43
        assert len(PKCEPair.generate(96).verifier) == 128

    def test_pairs_are_unique(self) -> None:
        assert PKCEPair.generate().verifier != PKCEPair.generate().verifier

    @pytest.mark.parametrize("num_bytes", [16, 31, 97])
    def test_out_of_bounds(self, num_bytes: int) -> None:
        with pytest.raises(ValueError, match="random bytes"):
            PKCEPair.generate(num_bytes)

    def test_authorize_params(self) -> None:
        pair = PKCEPair(verifier="v", challenge="c")
        assert pair.authorize_params() == {"code_challenge": "c", "code_challenge_method": "S256"}

    def test_rfc_7636_example(self) -> None:
        verifier = "dBjftJeZ4CVP-mB92K27uhbUJU1p1r_wW1gFWFOEjXk"
        assert s256(verifier) == "E9Melhoa2OwvFYEGFeKmlShCmGVS9IwtDvZtFUzGk5I"
