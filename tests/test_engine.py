"""Tests for the analysis pipeline."""

import hashlib
import json
import time
from concurrent.futures import ThreadPoolExecutor

import pytest

from bytesentinel.config import AnalysisConfig
from bytesentinel.scanner import engine
from bytesentinel.scanner.engine import (
    AnalysisCancelled,
    CancellationToken,
    Pipeline,
    analyze_bytes,
    analyze_file,
    analyze_files_with_progress,
    collect_files,
)
from bytesentinel.scanner.results import (
    ComponentStatus,
    EntropyStatus,
    IndicatorKind,
    IndicatorSource,
    MismatchClass,
    StegoTechnique,
    ThreatLevel,
)

EMPTY_SHA256 = "e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"


def _slow_component(data, identification, config, cancel):
    """Stand-in detector that runs until its token is cancelled."""
    stop_at = time.monotonic() + 5.0
    while not cancel.cancelled and time.monotonic() < stop_at:
        time.sleep(0.01)
    cancel.check()


class TestScenarios:
    """Test end-to-end verdicts on representative inputs."""

    def test_known_test_pattern(self, eicar_bytes):
        """Test the EICAR string is critical."""
        analysis = analyze_bytes(eicar_bytes)

        assert analysis.identification.format == "text"
        assert analysis.threat.level == ThreatLevel.CRITICAL
        assert analysis.threat.confidence == 70
        assert analysis.payloads.overall_risk == 100
        assert not analysis.is_safe

    def test_known_test_pattern_claimed_as_text(self, eicar_bytes):
        """Test EICAR uploaded as plain text matches its claim and is still critical."""
        analysis = analyze_bytes(eicar_bytes, "text/plain", "eicar.txt")

        assert analysis.header.match
        assert not analysis.header.suspicious
        assert analysis.threat.level == ThreatLevel.CRITICAL
        kinds = {i.kind for i in analysis.threat.indicators}
        assert IndicatorKind.EMBEDDED_PAYLOAD in kinds
        assert not kinds & {IndicatorKind.TYPE_MISMATCH, IndicatorKind.MASQUERADE}

    def test_executable_disguised_as_image(self, pe_bytes):
        """Test a PE image uploaded as a JPEG photo."""
        analysis = analyze_bytes(pe_bytes, "image/jpeg", "holiday.jpg")

        assert analysis.identification.format == "pe"
        assert analysis.header.suspicious
        assert analysis.threat.level == ThreatLevel.CRITICAL
        kinds = {i.kind for i in analysis.threat.indicators}
        assert IndicatorKind.MASQUERADE in kinds

    def test_image_with_appended_archive(self, png_bytes, zip_bytes):
        """Test a PNG carrying a ZIP archive after IEND."""
        data = png_bytes + zip_bytes
        analysis = analyze_bytes(data)

        assert analysis.polyglot.detected
        assert analysis.polyglot.formats == ("png", "zip")
        assert not analysis.polyglot.overlapping
        trailing = {t.technique: t for t in analysis.steganography.techniques}
        assert trailing[StegoTechnique.TRAILING_DATA].confidence == 90
        assert analysis.steganography.detected
        assert analysis.threat.level == ThreatLevel.CRITICAL

    def test_empty_input(self):
        """Test an empty buffer is unknown, not an error."""
        analysis = analyze_bytes(b"")

        assert analysis.size == 0
        assert analysis.sha256 == EMPTY_SHA256
        assert analysis.identification.is_unknown
        assert analysis.entropy.status == EntropyStatus.EMPTY
        assert analysis.threat.level == ThreatLevel.UNKNOWN
        assert analysis.threat.confidence == 10
        assert analysis.threat.indicators == ()

    def test_empty_input_with_claim(self):
        """Test an empty file named and typed as an image is still unknown."""
        analysis = analyze_bytes(b"", "image/png", "photo.png")

        assert analysis.header.claimed_type == "png"
        assert analysis.header.mismatch == MismatchClass.NONE
        assert analysis.threat.level == ThreatLevel.UNKNOWN
        assert analysis.threat.confidence == 10
        assert analysis.threat.indicators == ()

    def test_compressed_data_as_claimed(self, gzip_like_bytes):
        """Test high entropy inside a compressed format is safe."""
        analysis = analyze_bytes(gzip_like_bytes, "application/gzip")

        assert analysis.entropy.status == EntropyStatus.NORMAL
        assert analysis.entropy.deviation == 0.0
        assert analysis.threat.indicators == ()
        assert analysis.threat.level == ThreatLevel.SAFE

    def test_lsb_embedding(self, lsb_png_bytes):
        """Test a randomized LSB plane is reported."""
        analysis = analyze_bytes(lsb_png_bytes, "image/png")
        techniques = {t.technique: t for t in analysis.steganography.techniques}

        assert techniques[StegoTechnique.LSB_ANOMALY].confidence == 85
        assert IndicatorKind.STEGANOGRAPHY in {i.kind for i in analysis.threat.indicators}

    def test_clean_image(self, png_bytes):
        """Test a clean PNG claimed as PNG is safe."""
        analysis = analyze_bytes(png_bytes, "image/png", "picture.png")

        assert analysis.threat.level == ThreatLevel.SAFE
        assert analysis.threat.indicators == ()
        assert analysis.entropy.status == EntropyStatus.INSUFFICIENT_SAMPLE
        assert analysis.is_safe
        assert analysis.unavailable == ()
        assert analysis.caveats == ()


class TestPipeline:
    """Test pipeline mechanics."""

    def test_idempotent(self, png_bytes, zip_bytes):
        """Test the same input gives the same result."""
        pipeline = Pipeline()
        data = png_bytes + zip_bytes

        assert pipeline.analyze(data).to_dict() == pipeline.analyze(data).to_dict()

    def test_shared_between_threads(self, png_bytes, zip_bytes, eicar_bytes):
        """Test concurrent runs on one pipeline agree with a sequential run."""
        pipeline = Pipeline()
        data = png_bytes + zip_bytes + eicar_bytes
        expected = pipeline.analyze(data, "image/png", "cat.png").to_dict()

        with ThreadPoolExecutor(max_workers=8) as pool:
            futures = [
                pool.submit(pipeline.analyze, data, "image/png", "cat.png") for _ in range(16)
            ]
            results = [future.result().to_dict() for future in futures]

        assert all(result == expected for result in results)

    def test_hash_and_size(self, png_bytes):
        """Test the report carries the size and SHA-256 of the input."""
        analysis = analyze_bytes(png_bytes)

        assert analysis.size == len(png_bytes)
        assert analysis.sha256 == hashlib.sha256(png_bytes).hexdigest()

    def test_buffer_limit(self, png_bytes):
        """Test input past the buffer limit is dropped with a caveat."""
        config = AnalysisConfig(max_buffer_bytes=64, max_scan_bytes=64)
        analysis = analyze_bytes(png_bytes, config=config)

        assert analysis.size == len(png_bytes)
        assert analysis.sha256 == hashlib.sha256(png_bytes).hexdigest()
        assert any("64-byte limit" in c for c in analysis.caveats)

    def test_truncation_lowers_confidence(self, png_bytes):
        """Test a truncated analysis is less confident than a full one."""
        full = analyze_bytes(png_bytes, "image/png")
        truncated = analyze_bytes(
            png_bytes, "image/png", config=AnalysisConfig(max_buffer_bytes=64, max_scan_bytes=64)
        )

        assert truncated.threat.confidence < full.threat.confidence

    def test_scan_limit_caveat(self, png_bytes):
        """Test a scan extent shorter than the buffer is reported."""
        analysis = analyze_bytes(png_bytes, config=AnalysisConfig(max_scan_bytes=16))

        assert "Pattern detectors scanned the first 16 bytes" in analysis.caveats

    def test_entropy_sampling_caveat(self, random_bytes):
        """Test sampled entropy is reported."""
        analysis = analyze_bytes(random_bytes, config=AnalysisConfig(entropy_sample_bytes=4096))

        assert "Entropy measured on the leading 4096 bytes" in analysis.caveats

    def test_accepts_bytearray(self, png_bytes):
        """Test mutable buffers are copied, not shared."""
        buffer = bytearray(png_bytes)
        analysis = analyze_bytes(buffer)
        buffer[:] = b"\x00" * len(buffer)

        assert analysis.identification.format == "png"

    def test_to_json(self, eicar_bytes):
        """Test the report serializes to JSON."""
        data = json.loads(analyze_bytes(eicar_bytes).to_json())

        assert data["threat"]["level"] == "critical"
        assert data["identification"]["format"] == "text"
        assert data["unavailable"] == []


class TestComponentFailures:
    """Test degraded runs."""

    def test_failed_component(self, monkeypatch, png_bytes):
        """Test a raising detector is recorded and the rest still report."""

        def broken(*args):
            raise RuntimeError("parser exploded")

        monkeypatch.setattr(engine, "detect_polyglot", broken)
        analysis = analyze_bytes(png_bytes, "image/png")

        assert analysis.polyglot is None
        assert analysis.steganography is not None
        (note,) = analysis.unavailable
        assert note.component == IndicatorSource.POLYGLOT_DETECTOR
        assert note.status == ComponentStatus.FAILED
        assert note.detail == "RuntimeError: parser exploded"
        assert analysis.threat.level == ThreatLevel.SAFE
        assert analysis.threat.confidence == 80

    def test_timed_out_component(self, monkeypatch, png_bytes):
        """Test a detector that misses its deadline is recorded."""
        monkeypatch.setattr(engine, "hunt_payloads", _slow_component)
        pipeline = Pipeline(AnalysisConfig(component_timeout=0.5))

        started = time.monotonic()
        analysis = pipeline.analyze(png_bytes)

        assert time.monotonic() - started < 4.0
        assert analysis.payloads is None
        (note,) = analysis.unavailable
        assert note.component == IndicatorSource.PAYLOAD_HUNTER
        assert note.status == ComponentStatus.TIMED_OUT
        assert note.detail == "No result within 0.5s"

    def test_internal_cancellation_is_a_failure(self, monkeypatch, png_bytes):
        """Test a component raising cancellation on its own is just unavailable."""

        def gives_up(*args):
            raise AnalysisCancelled("gave up")

        monkeypatch.setattr(engine, "detect_steganography", gives_up)
        analysis = analyze_bytes(png_bytes)

        (note,) = analysis.unavailable
        assert note.status == ComponentStatus.FAILED
        assert note.detail == "Cancelled"


class TestCancellation:
    """Test caller-requested cancellation."""

    def test_cancelled_before_start(self, png_bytes):
        """Test an already-cancelled token aborts immediately."""
        token = CancellationToken()
        token.cancel()

        with pytest.raises(AnalysisCancelled):
            analyze_bytes(png_bytes, cancel=token)

    def test_cancelled_during_run(self, monkeypatch, png_bytes):
        """Test cancelling mid-run raises instead of returning a partial result."""
        token = CancellationToken()

        def cancels(data, identification, config, cancel):
            token.cancel()
            cancel.check()

        monkeypatch.setattr(engine, "hunt_payloads", cancels)

        with pytest.raises(AnalysisCancelled):
            analyze_bytes(png_bytes, cancel=token)

    def test_child_token_follows_parent(self):
        """Test a linked token observes its parent."""
        parent = CancellationToken()
        child = CancellationToken(parent=parent)

        assert not child.cancelled
        parent.cancel()
        assert child.cancelled

    def test_child_does_not_cancel_parent(self):
        """Test cancelling a child leaves the parent running."""
        parent = CancellationToken()
        child = CancellationToken(parent=parent)
        child.cancel()

        assert not parent.cancelled


class TestExtensions:
    """Test attaching collaborator sub-results."""

    def test_with_extension(self, png_bytes):
        """Test extension values are attached to a copy."""
        analysis = analyze_bytes(png_bytes)
        extended = analysis.with_extension("av_scan", {"engine": "clam", "hits": 0})

        assert extended.extensions["av_scan"] == {"engine": "clam", "hits": 0}
        assert "av_scan" not in analysis.extensions
        assert extended.to_dict()["extensions"]["av_scan"]["hits"] == 0

    def test_existing_fields_protected(self, png_bytes):
        """Test core fields and existing extensions cannot be overwritten."""
        extended = analyze_bytes(png_bytes).with_extension("av_scan", 1)

        with pytest.raises(ValueError):
            extended.with_extension("threat", {})
        with pytest.raises(ValueError):
            extended.with_extension("av_scan", 2)


class TestFiles:
    """Test file helpers."""

    def test_analyze_file(self, png_file, png_bytes):
        """Test the filename supplies the claim."""
        analysis = analyze_file(png_file)

        assert analysis.header.claimed_type == "png"
        assert analysis.header.match
        assert analysis.size == len(png_bytes)

    def test_disguised_file(self, disguised_pe_file):
        """Test an executable saved under an image name."""
        analysis = analyze_file(disguised_pe_file)

        assert analysis.header.claimed_type == "jpeg"
        assert analysis.threat.level == ThreatLevel.CRITICAL

    def test_large_file_hash_covers_whole_file(self, png_file, png_bytes):
        """Test the hash is of the file, not of the analyzed prefix."""
        config = AnalysisConfig(max_buffer_bytes=32, max_scan_bytes=32)
        analysis = analyze_file(png_file, config=config)

        assert analysis.size == len(png_bytes)
        assert analysis.sha256 == hashlib.sha256(png_bytes).hexdigest()
        assert analysis.caveats

    def test_missing_file(self, fixtures_dir):
        """Test read errors propagate."""
        with pytest.raises(OSError):
            analyze_file(fixtures_dir / "missing.bin")

    def test_collect_files(self, fixtures_dir):
        """Test recursive and flat collection."""
        (fixtures_dir / "b.txt").write_text("b")
        (fixtures_dir / "a.txt").write_text("a")
        nested = fixtures_dir / "nested"
        nested.mkdir()
        (nested / "c.txt").write_text("c")

        assert [p.name for p in collect_files(fixtures_dir)] == ["a.txt", "b.txt", "c.txt"]
        assert [p.name for p in collect_files(fixtures_dir, recursive=False)] == ["a.txt", "b.txt"]

    def test_collect_files_not_a_directory(self, png_file):
        """Test a file path yields nothing."""
        assert collect_files(png_file) == []

    def test_analyze_files_with_progress(self, png_file, fixtures_dir):
        """Test unreadable files are reported and skipped."""
        missing = fixtures_dir / "gone.png"
        results = list(analyze_files_with_progress([png_file, missing], Pipeline()))

        assert results[0][0] == png_file
        assert results[0][1] is not None
        assert results[0][2] is None
        assert results[1][0] == missing
        assert results[1][1] is None
        assert results[1][2]
