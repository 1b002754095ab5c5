"""Byte and text patterns used by the detectors."""

import re

# The EICAR anti-malware test file. Harmless, but every scanner must flag it.
EICAR_SIGNATURE = (
    rb"X5O!P%@AP[4\PZX54(P^)7CC)7}$EICAR-STANDARD-ANTIVIRUS-TEST-FILE!$H+H*"
)

# Inner extensions that make a double extension dangerous (invoice.exe.pdf)
DANGEROUS_EXTENSIONS = frozenset(
    {
        "exe",
        "dll",
        "scr",
        "pif",
        "com",
        "cpl",
        "msi",
        "bat",
        "cmd",
        "ps1",
        "psm1",
        "sh",
        "py",
        "js",
        "jse",
        "vbs",
        "vbe",
        "wsf",
        "hta",
        "jar",
        "lnk",
        "elf",
        "bin",
    }
)

# Shell-command text: (name, pattern, confidence, description)
SHELL_COMMAND_PATTERNS: list[tuple[str, re.Pattern, int, str]] = [
    (
        "reverse_shell",
        re.compile(rb"(?:ba)?sh\s+-i\s+>&\s*/dev/tcp/", re.IGNORECASE),
        75,
        "Interactive shell redirected to a TCP socket",
    ),
    (
        "dev_tcp",
        re.compile(rb"/dev/tcp/\d{1,3}(?:\.\d{1,3}){3}/\d{1,5}"),
        75,
        "Bash /dev/tcp network redirection",
    ),
    (
        "netcat_exec",
        re.compile(rb"\bnc(?:at)?\s+(?:-\w+\s+)*-e\s+/bin/(?:ba)?sh", re.IGNORECASE),
        75,
        "Netcat spawning a shell",
    ),
    (
        "regsvr32_scriptlet",
        re.compile(rb"regsvr32(?:\.exe)?\s+/s\s+/n\s+/u\s+/i:", re.IGNORECASE),
        75,
        "regsvr32 remote scriptlet execution",
    ),
    (
        "download_pipe_shell",
        re.compile(rb"\b(?:curl|wget)\s+[^\s|;]+[^|;\n]*\|\s*(?:ba)?sh\b", re.IGNORECASE),
        70,
        "Download piped into a shell",
    ),
    (
        "certutil_download",
        re.compile(rb"certutil(?:\.exe)?\s+-urlcache", re.IGNORECASE),
        70,
        "certutil used as a downloader",
    ),
    (
        "mshta_remote",
        re.compile(rb"mshta(?:\.exe)?\s+(?:https?:|javascript:|vbscript:)", re.IGNORECASE),
        70,
        "mshta executing remote or inline script",
    ),
    (
        "destructive_rm",
        re.compile(rb"\brm\s+-rf\s+/(?:\s|$|\*)"),
        70,
        "Recursive delete of the filesystem root",
    ),
    (
        "cmd_exec",
        re.compile(rb"\bcmd(?:\.exe)?\s*/[ck]\s+\S", re.IGNORECASE),
        65,
        "Windows command prompt invocation",
    ),
    (
        "powershell_command",
        re.compile(
            rb"powershell(?:\.exe)?\s+(?:-\w+\s+)*-(?:c|command|noprofile|windowstyle)\b",
            re.IGNORECASE,
        ),
        65,
        "PowerShell command invocation",
    ),
    (
        "chmod_and_run",
        re.compile(rb"chmod\s+\+x\s+\S+\s*(?:;|&&)\s*\./", re.IGNORECASE),
        65,
        "File made executable and run",
    ),
    (
        "shell_dash_c",
        re.compile(rb"/bin/(?:ba)?sh\s+-c\s"),
        60,
        "Shell invoked with an inline command",
    ),
]

# Embedded script blocks: (name, pattern, confidence, description)
SCRIPT_PATTERNS: list[tuple[str, re.Pattern, int, str]] = [
    (
        "powershell_encoded",
        re.compile(
            rb"powershell(?:\.exe)?\s+(?:-\w+\s+)*-(?:e|enc|encodedcommand)\s+[A-Za-z0-9+/=]{20,}",
            re.IGNORECASE,
        ),
        80,
        "Encoded PowerShell command",
    ),
    (
        "script_element",
        re.compile(rb"<script\b[^>]*>[^<]{50,}</script>", re.IGNORECASE),
        55,
        "Embedded <script> block",
    ),
    (
        "eval_call",
        re.compile(rb"\beval\s*\([^)]{50,}\)"),
        60,
        "Long eval() expression",
    ),
]

URL_PATTERN = re.compile(
    rb"(?:https?|ftp)://"
    rb"(\[[0-9A-Fa-f:.]+\]|[A-Za-z0-9](?:[A-Za-z0-9.-]{0,251}[A-Za-z0-9])?)"
    rb"(?::\d{1,5})?"
    rb"(?:/[!#-;=?-~]*)?"
)

IPV4_HOST = re.compile(rb"\d{1,3}(?:\.\d{1,3}){3}")

# Hosts that appear in XML namespaces and metadata, not as links
NAMESPACE_HOSTS = (
    "w3.org",
    "ns.adobe.com",
    "purl.org",
    "schemas.openxmlformats.org",
    "schemas.microsoft.com",
    "iptc.org",
    "xml.org",
    "openoffice.org",
    "oasis-open.org",
)

URL_CONFIDENCE = 40
IP_URL_CONFIDENCE = 55

# Known shellcode prologues: (bytes, confidence, description)
SHELLCODE_PROLOGUES: list[tuple[bytes, int, str]] = [
    (b"\xeb\x1e\x5e\x89\x76", 85, "JMP/CALL/POP decoder stub"),
    (
        b"\x31\xc0\x50\x68\x2f\x2f\x73\x68\x68\x2f\x62\x69\x6e",
        85,
        "execve('/bin//sh') stub",
    ),
    (b"\xfc\xe8\x82\x00\x00\x00\x60\x89\xe5", 85, "Windows x86 API-hashing stub"),
    (b"\xfc\x48\x83\xe4\xf0\xe8", 85, "Windows x64 API-hashing stub"),
    (b"\x48\x31\xc0\x48\x31\xdb", 80, "x64 register clearing sequence"),
]

NOP = 0x90
NOP_SLED_CONFIDENCE = 70

# Opcodes that typically start the code a NOP sled slides into
SLED_FOLLOWING_OPCODES = frozenset(
    {
        0x31,  # xor r/m32, r32
        0x33,  # xor r32, r/m32
        0x48,  # REX.W prefix
        0x55,  # push ebp
        0x5E,  # pop esi
        0x68,  # push imm32
        0x6A,  # push imm8
        0x89,  # mov r/m32, r32
        0x8B,  # mov r32, r/m32
        0xB8,  # mov eax, imm32
        0xE8,  # call rel32
        0xE9,  # jmp rel32
        0xEB,  # jmp rel8
        0xFC,  # cld
    }
)

# Decoded base64 confidence
BASE64_EXECUTABLE_CONFIDENCE = 90
BASE64_SHELL_CONFIDENCE = 70

# PNG text keywords defined by the PNG specification or written by common tools
STANDARD_PNG_KEYWORDS = frozenset(
    {
        "Title",
        "Author",
        "Description",
        "Copyright",
        "Creation Time",
        "Software",
        "Disclaimer",
        "Warning",
        "Source",
        "Comment",
        "date:create",
        "date:modify",
        "date:timestamp",
    }
)

# Metadata containers whose bodies are routinely large
METADATA_PNG_KEYWORDS = frozenset(
    {
        "XML:com.adobe.xmp",
        "Raw profile type exif",
        "Raw profile type iptc",
        "Raw profile type xmp",
        "Raw profile type APP1",
    }
)

# Keywords written by image-generation tools; large bodies are normal for these
AI_PNG_KEYWORDS = frozenset(
    {
        "parameters",
        "prompt",
        "workflow",
        "Dream",
        "sd-metadata",
        "invokeai_metadata",
        "generation_data",
    }
)

PNG_TEXT_CHUNK_TYPES = (b"tEXt", b"iTXt", b"zTXt")
PNG_TEXT_SUSPICIOUS_CONFIDENCE = 60
PNG_TEXT_MAX_BODY = 1024
