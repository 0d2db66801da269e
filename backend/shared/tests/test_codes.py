from unittest.mock import patch

import pytest

from shared.codes import CODE_ALPHABET, CODE_LENGTH, MANAGER_CODE_PREFIX, generate_access_code, generate_unique_code


class TestGenerateAccessCode:
    def test_default_shape(self):
        code = generate_access_code()
        assert len(code) == CODE_LENGTH
        assert set(code) <= set(CODE_ALPHABET)

    def test_manager_prefix(self):
        code = generate_access_code(prefix=MANAGER_CODE_PREFIX)
        assert code.startswith("MGR")
        assert len(code) == len(MANAGER_CODE_PREFIX) + CODE_LENGTH


class TestGenerateUniqueCode:
    def test_retries_until_code_is_free(self):
        with patch("shared.codes.generate_access_code", side_effect=["AAAAAA", "BBBBBB", "CCCCCC"]):
            code = generate_unique_code({"AAAAAA", "BBBBBB"})
        assert code == "CCCCCC"

    def test_checks_against_full_existing_set(self):
        existing = (c for c in ["AAAAAA", "BBBBBB"])
        with patch("shared.codes.generate_access_code", side_effect=["BBBBBB", "AAAAAA", "DDDDDD"]):
            assert generate_unique_code(existing) == "DDDDDD"

    def test_raises_when_attempts_run_out(self):
        with (
            patch("shared.codes.generate_access_code", return_value="AAAAAA"),
            pytest.raises(RuntimeError, match="after 5 attempts"),
        ):
            generate_unique_code(["AAAAAA"], max_attempts=5)

    def test_generated_codes_are_pairwise_distinct(self):
        codes: list[str] = []
        for _ in range(200):
            codes.append(generate_unique_code(codes))
        assert len(set(codes)) == len(codes)
