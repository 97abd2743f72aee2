#!/usr/bin/env python3

from __future__ import annotations

import sys
from pathlib import Path

import pytest

# Ensure we can import from src/ without installing the package
ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
sys.path.insert(0, str(SRC))

from neonloc import config as cfg


def test_load_yaml_missing_file_exits(tmp_path):
    with pytest.raises(SystemExit):
        cfg.load_yaml(tmp_path / "nope.yaml")


def test_load_yaml_rejects_non_mapping(tmp_path):
    p = tmp_path / "list.yaml"
    p.write_text("- a\n- b\n")
    with pytest.raises(SystemExit):
        cfg.load_yaml(p)


def test_shipped_sources_yaml_has_presets():
    data = cfg.load_yaml(ROOT / "config" / "sources.yaml")
    assert cfg.source_config(data, "mammals")["dpid"] == "DP1.10072.001"
    assert cfg.source_config(data, "soil-temp")["dpid"] == "DP1.00041.001"
    assert cfg.api_base_url(data) == "https://data.neonscience.org/api/v0"


def test_source_config_missing_block_exits():
    with pytest.raises(SystemExit):
        cfg.source_config({"sources": {}}, "domains")
    with pytest.raises(SystemExit):
        cfg.source_config({}, "domains")


def test_resolve_token_precedence(monkeypatch):
    monkeypatch.setenv("NEON_TOKEN", "from-env")
    assert cfg.resolve_token("from-cli", {"api": {"token": "from-yaml"}}) == "from-cli"
    assert cfg.resolve_token(None, {"api": {"token": "from-yaml"}}) == "from-yaml"
    assert cfg.resolve_token(None, {}) == "from-env"
    monkeypatch.delenv("NEON_TOKEN")
    assert cfg.resolve_token(None, {}) is None


def test_coerce_bbox():
    assert cfg.coerce_bbox(["-110", 35, -100, "45"]) == (-110.0, 35.0, -100.0, 45.0)
    assert cfg.coerce_bbox([1, 2, 3]) is None
    assert cfg.coerce_bbox(["a", 2, 3, 4]) is None
    assert cfg.coerce_bbox([5, 0, 1, 1]) is None
    assert cfg.coerce_bbox(None) is None


def test_union_bbox():
    assert cfg.union_bbox([]) is None
    assert cfg.union_bbox([(0, 0, 1, 1), (-1, 0.5, 0.5, 3)]) == (-1, 0, 1, 3)


def test_parse_bbox_arg_rejects_bad_values():
    assert cfg.parse_bbox_arg(None) is None
    with pytest.raises(SystemExit):
        cfg.parse_bbox_arg(["1", "2", "x", "4"])
