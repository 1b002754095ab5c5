"""Tests for the command-line interface."""

import json

from typer.testing import CliRunner

from bytesentinel import __version__
from bytesentinel import cli
from bytesentinel.cli import app

runner = CliRunner()


class TestScan:
    """Test the scan command."""

    def test_clean_file(self, png_file):
        """Test a clean file exits 0."""
        result = runner.invoke(app, ["scan", str(png_file)])

        assert result.exit_code == 0
        assert "SAFE" in result.stdout
        assert "none HIGH or CRITICAL" in result.stdout

    def test_disguised_executable(self, disguised_pe_file):
        """Test a HIGH or CRITICAL verdict exits 1."""
        result = runner.invoke(app, ["scan", str(disguised_pe_file)])

        assert result.exit_code == 1
        assert "CRITICAL" in result.stdout

    def test_json_output(self, png_file):
        """Test JSON output for a single file."""
        result = runner.invoke(app, ["scan", str(png_file), "--json"])

        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["summary"]["total_files"] == 1
        entry = data["results"][0]
        assert entry["path"] == str(png_file)
        assert entry["identification"]["format"] == "png"
        assert entry["threat"]["level"] == "safe"
        assert entry["recommendations"] == ["No action needed."]

    def test_directory_json(self, png_file, disguised_pe_file):
        """Test a directory scan summarizes every file."""
        result = runner.invoke(app, ["scan", str(png_file.parent), "--json"])

        assert result.exit_code == 1
        data = json.loads(result.stdout)
        assert data["summary"]["total_files"] == 2
        assert data["summary"]["unsafe_files"] == 1
        assert data["summary"]["files_by_format"] == {"pe": 1, "png": 1}
        flagged = next(r for r in data["results"] if r["path"].endswith("holiday.jpg"))
        assert flagged["threat"]["level"] == "critical"
        assert flagged["recommendations"]

    def test_directory_table(self, png_file, disguised_pe_file):
        """Test a directory scan prints a summary."""
        result = runner.invoke(app, ["scan", str(png_file.parent)])

        assert result.exit_code == 1
        assert "Found 2 file(s)" in result.stdout
        assert "1 HIGH or CRITICAL" in result.stdout

    def test_empty_directory(self, fixtures_dir):
        """Test an empty directory is not an error."""
        empty = fixtures_dir / "empty"
        empty.mkdir()
        result = runner.invoke(app, ["scan", str(empty)])

        assert result.exit_code == 0
        assert "No files found" in result.stdout

    def test_claimed_type(self, png_file):
        """Test the declared type overrides the filename."""
        result = runner.invoke(app, ["scan", str(png_file), "-t", "image/gif", "--json"])
        entry = json.loads(result.stdout)["results"][0]

        assert result.exit_code == 0
        assert entry["header"]["claimed_type"] == "gif"
        assert entry["threat"]["level"] == "low"

    def test_verbose(self, png_file):
        """Test verbose output shows component details."""
        result = runner.invoke(app, ["scan", str(png_file), "--verbose"])

        assert result.exit_code == 0
        assert "SHA-256" in result.stdout

    def test_config_file(self, png_file, fixtures_dir):
        """Test settings are read from a configuration file."""
        config = fixtures_dir / "settings.json"
        config.write_text(json.dumps({"max_buffer_bytes": 32, "max_scan_bytes": 32}))
        result = runner.invoke(app, ["scan", str(png_file), "--config", str(config), "--json"])
        entry = json.loads(result.stdout)["results"][0]

        assert any("32-byte limit" in caveat for caveat in entry["caveats"])

    def test_invalid_config(self, png_file, fixtures_dir):
        """Test an invalid configuration exits 2."""
        config = fixtures_dir / "settings.json"
        config.write_text(json.dumps({"max_workers": 0}))
        result = runner.invoke(app, ["scan", str(png_file), "--config", str(config)])

        assert result.exit_code == 2
        assert "Configuration error" in result.stdout

    def test_max_bytes_override(self, png_file):
        """Test the buffer limit can be set on the command line."""
        result = runner.invoke(app, ["scan", str(png_file), "--max-bytes", "16", "--json"])
        entry = json.loads(result.stdout)["results"][0]

        assert entry["size"] == png_file.stat().st_size
        assert entry["caveats"]

    def test_missing_path(self, fixtures_dir):
        """Test a nonexistent path is a usage error."""
        result = runner.invoke(app, ["scan", str(fixtures_dir / "nope.png")])

        assert result.exit_code == 2


class TestIdentify:
    """Test the identify command."""

    def test_table(self, png_file):
        """Test the identification table."""
        result = runner.invoke(app, ["identify", str(png_file)])

        assert result.exit_code == 0
        assert "image/png" in result.stdout

    def test_json(self, disguised_pe_file):
        """Test JSON identification ignores the filename."""
        result = runner.invoke(app, ["identify", str(disguised_pe_file), "--json"])
        data = json.loads(result.stdout)

        assert result.exit_code == 0
        assert data["format"] == "pe"
        assert data["category"] == "executable"

    def test_directory_rejected(self, fixtures_dir):
        """Test directories cannot be identified."""
        result = runner.invoke(app, ["identify", str(fixtures_dir)])

        assert result.exit_code == 1

    def test_config_signatures(self, fixtures_dir):
        """Test identification uses the configured signature table."""
        sample = fixtures_dir / "sample.bin"
        sample.write_bytes(b"\xc0\xff\xee" + bytes(64))
        config = fixtures_dir / "signatures.json"
        config.write_text(
            json.dumps({"signatures": [{"format": "flac", "pattern": "C0 FF EE"}]})
        )

        default = runner.invoke(app, ["identify", str(sample), "--json"])
        configured = runner.invoke(
            app, ["identify", str(sample), "--config", str(config), "--json"]
        )

        assert json.loads(default.stdout)["format"] == "unknown"
        assert configured.exit_code == 0
        assert json.loads(configured.stdout)["format"] == "flac"

    def test_unreadable_file(self, png_file, monkeypatch):
        """Test a read error is reported and exits 1."""

        def denied(*args, **kwargs):
            raise PermissionError("permission denied")

        monkeypatch.setattr(cli, "open", denied, raising=False)
        result = runner.invoke(app, ["identify", str(png_file)])

        assert result.exit_code == 1
        assert "cannot read" in result.stdout


class TestVersion:
    """Test the version command."""

    def test_version(self):
        """Test version output."""
        result = runner.invoke(app, ["version"])

        assert result.exit_code == 0
        assert f"ByteSentinel v{__version__}" in result.stdout
