import pytest

from erc20_ingest.cli import parse_args, run


def test_parse_args_defaults():
    args = parse_args([])
    assert args.config == "config.yaml"
    assert args.log_level is None
    assert args.to_block is None


def test_parse_args():
    args = parse_args(["--config", "ronin.yaml", "--log-level", "debug", "--to-block", "17000150"])
    assert args.config == "ronin.yaml"
    assert args.log_level == "debug"
    assert args.to_block == 17_000_150


def test_invalid_config_exits_with_2(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)

    with pytest.raises(SystemExit) as exc_info:
        run(["--config", str(tmp_path / "missing.yaml")])

    assert exc_info.value.code == 2


def test_to_block_before_genesis_exits_with_2(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    config = tmp_path / "config.yaml"
    config.write_text(
        "provider:\n"
        "  url: http://localhost:8545\n"
        "contracts:\n"
        '  - address: "0xc99a6a985ed2cac1ef41640596c5a5f9f4e19ef5"\n'
        "    symbol: WETH\n"
        "    decimals: 18\n"
        "writer:\n"
        "  kind: duckdb\n"
        "checkpoint:\n"
        "  genesis_block: 17000000\n"
    )

    with pytest.raises(SystemExit) as exc_info:
        run(["--config", str(config), "--to-block", "16999000"])

    assert exc_info.value.code == 2
