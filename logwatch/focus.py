from __future__ import annotations

import base64
import logging
import os
import re
import subprocess


logger = logging.getLogger("logwatch.focus")

_UNSAFE = re.compile(r"[^a-zA-Z0-9 \-_]")

_PS_TEMPLATE = r"""
$ProgressPreference = 'SilentlyContinue'
$titlePattern = "*{name}*"
$code = @'
[DllImport("user32.dll")] public static extern bool ShowWindowAsync(IntPtr hWnd, int nCmdShow);
[DllImport("user32.dll")] public static extern bool SetForegroundWindow(IntPtr hWnd);
[DllImport("user32.dll")] public static extern bool BringWindowToTop(IntPtr hWnd);
'@
try {{ $type = Add-Type -MemberDefinition $code -Name LogWatchFocus -Namespace LogWatch -PassThru }} catch {{ $type = [LogWatch.LogWatchFocus] }}
$proc = Get-Process | Where-Object {{ $_.MainWindowTitle -like $titlePattern }} | Select-Object -First 1
if ($proc) {{
    $hWnd = $proc.MainWindowHandle
    $type::BringWindowToTop($hWnd) | Out-Null
    $type::ShowWindowAsync($hWnd, 9) | Out-Null
    $type::SetForegroundWindow($hWnd) | Out-Null
}}
"""


def sanitize_name(name: str) -> str:
    return _UNSAFE.sub("", name or "")


def focus_window(character: str) -> bool:
    """Bring the client window whose title contains character to the front.

    Only implemented on Windows; elsewhere this logs and returns False.
    """
    name = sanitize_name(character)
    if not name:
        return False
    logger.info('[focus] request for "%s"', name)
    if os.name != "nt":
        logger.info("[focus] window activation is only available on Windows")
        return False
    script = _PS_TEMPLATE.format(name=name)
    encoded = base64.b64encode(script.encode("utf-16-le")).decode("ascii")
    try:
        subprocess.Popen(
            ["powershell.exe", "-NoProfile", "-ExecutionPolicy", "Bypass", "-EncodedCommand", encoded],
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
        )
    except OSError as e:
        logger.warning("[focus] could not launch powershell: %s", e)
        return False
    return True
