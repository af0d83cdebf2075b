from __future__ import annotations

import json

import pytest
import yaml

from covenant.cli import EXIT_ERROR, EXIT_INCOMPATIBLE, EXIT_INVALID_DATA, EXIT_OK, main


@pytest.fixture
def data_files(tmp_path):
    good = tmp_path / "good.json"
    bad = tmp_path / "bad.json"
    good.write_text(json.dumps({"id": "abc"}), encoding="utf-8")
    bad.write_text(json.dumps({"name": "no id"}), encoding="utf-8")
    return good, bad


def test_negotiate_ok(terms_dir, data_files, capsys):
    good, _ = data_files
    code = main(["negotiate", "ref://provider.yaml", "ref://consumer.json", "--dir", str(terms_dir), "--data", str(good)])
    out = capsys.readouterr().out
    assert code == EXIT_OK
    assert out.splitlines()[0] == "NEGOTIATED"
    assert f"{good}: valid" in out


def test_negotiate_invalid_data(terms_dir, data_files, capsys):
    good, bad = data_files
    code = main(
        [
            "negotiate",
            "provider.yaml",
            "consumer.json",
            "--dir",
            str(terms_dir),
            "--data",
            str(good),
            "--data",
            str(bad),
        ]
    )
    out = capsys.readouterr().out
    assert code == EXIT_INVALID_DATA
    assert f"{bad}: INVALID" in out
    assert "Missing required field: id" in out


def test_negotiate_incompatible(terms_dir, capsys):
    (terms_dir / "strict.yaml").write_text(
        yaml.safe_dump({"accepts": {"type": "object", "required": ["id", "email"]}}), encoding="utf-8"
    )
    code = main(["negotiate", "ref://provider.yaml", "ref://strict.yaml", "--dir", str(terms_dir)])
    out = capsys.readouterr().out
    assert code == EXIT_INCOMPATIBLE
    assert out.splitlines() == ["INCOMPATIBLE", "  - provider missing required field 'email' @email"]


def test_require_guaranteed_flag(terms_dir, capsys):
    (terms_dir / "loose.yaml").write_text(
        yaml.safe_dump({"provides": {"type": "object", "properties": {"id": {"type": "string"}}}}),
        encoding="utf-8",
    )
    args = ["negotiate", "ref://loose.yaml", "ref://consumer.json", "--dir", str(terms_dir)]
    assert main(args) == EXIT_OK
    assert main([*args, "--require-guaranteed"]) == EXIT_INCOMPATIBLE
    capsys.readouterr()


def test_negotiate_json_summary(terms_dir, data_files, capsys):
    _, bad = data_files
    code = main(
        ["negotiate", "ref://provider.yaml", "ref://consumer.json", "--dir", str(terms_dir), "--data", str(bad), "--json"]
    )
    summary = json.loads(capsys.readouterr().out)
    assert code == EXIT_INVALID_DATA
    assert summary["negotiated"] is True
    assert summary["reasons"] == []
    (row,) = summary["data"]
    assert row["valid"] is False
    assert row["errors"][0]["keyword"] == "required"
    assert row["errors"][0]["params"] == {"missing_property": "id"}


def test_inline_terms(capsys):
    provider = json.dumps({"provides": {"type": "integer"}})
    consumer = json.dumps({"accepts": {"type": "number"}})
    assert main(["negotiate", provider, consumer]) == EXIT_OK
    assert capsys.readouterr().out.strip() == "NEGOTIATED"


def test_structural_errors_exit_with_report(tmp_path, capsys):
    code = main(["negotiate", "ref://missing.yaml", "ref://also-missing.yaml", "--dir", str(tmp_path)])
    err = capsys.readouterr().err
    assert code == EXIT_ERROR
    assert err.startswith("[error] resolution")


def test_check_schema(tmp_path, capsys):
    good = tmp_path / "schema.yaml"
    good.write_text("type: object\nrequired: [id]\n", encoding="utf-8")
    assert main(["check-schema", str(good)]) == EXIT_OK
    assert capsys.readouterr().out.strip() == f"OK {good}"

    bad = tmp_path / "bad.json"
    bad.write_text(json.dumps({"type": "nonsense"}), encoding="utf-8")
    assert main(["check-schema", str(bad)]) == EXIT_ERROR
    err = capsys.readouterr().err
    assert "[error] compilation" in err
    assert "did not compile" in err
