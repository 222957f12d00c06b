from __future__ import annotations

import json

from typer.testing import CliRunner

from opengather import cli, crud, database

runner = CliRunner()


def test_add_member_prints_access_token():
    result = runner.invoke(cli.app, ["add-member", "Host@Example.com", "--name", "Host", "--admin"])

    assert result.exit_code == 0, result.output
    token = result.output.strip()
    with database.get_session() as session:
        member = crud.get_member_by_token(session, token)
        assert member.email == "host@example.com"
        assert member.is_admin is True


def test_add_member_rejects_simple_admin():
    result = runner.invoke(cli.app, ["add-member", "x@example.com", "--simple", "--admin"])
    assert result.exit_code == 1


def test_admin_token_is_stable():
    first = runner.invoke(cli.app, ["admin-token"]).output.strip()
    second = runner.invoke(cli.app, ["admin-token"]).output.strip()
    assert first and first == second


def test_config_show_masks_api_key(tmp_path, monkeypatch):
    monkeypatch.setenv("OPENGATHER_RESEND_API_KEY", "re_secret")
    result = runner.invoke(
        cli.app, ["config", "--show", "--config-path", str(tmp_path / "opengather.toml")]
    )
    assert result.exit_code == 0, result.output
    shown = json.loads(result.output)
    assert shown["resend_api_key"] == "********"
