"""Third-party license notices printed by ``tpsim --license``."""

from __future__ import annotations

import sys
from dataclasses import dataclass
from typing import IO, Iterable


@dataclass(frozen=True)
class LicenseNotice:
    component: str
    license_name: str
    url: str
    text: str


PYTHON_NOTICE = LicenseNotice(
    component="Python standard library",
    license_name="Python Software Foundation License Version 2",
    url="https://docs.python.org/3/license.html",
    text=(
        "Copyright (c) 2001 Python Software Foundation; All Rights Reserved.\n"
        "\n"
        "PSF is making Python available to Licensee on an \"AS IS\" basis.\n"
        "PSF MAKES NO REPRESENTATIONS OR WARRANTIES, EXPRESS OR IMPLIED.\n"
        "BY WAY OF EXAMPLE, BUT NOT LIMITATION, PSF MAKES NO AND DISCLAIMS ANY\n"
        "REPRESENTATION OR WARRANTY OF MERCHANTABILITY OR FITNESS FOR ANY\n"
        "PARTICULAR PURPOSE OR THAT THE USE OF PYTHON WILL NOT INFRINGE ANY\n"
        "THIRD PARTY RIGHTS."
    ),
)

THIRD_PARTY_NOTICES: tuple[LicenseNotice, ...] = (PYTHON_NOTICE,)


def format_notices(notices: Iterable[LicenseNotice] = THIRD_PARTY_NOTICES) -> str:
    blocks = []
    for notice in notices:
        header = f"{notice.component} ({notice.license_name})"
        blocks.append(
            "\n".join((header, "=" * len(header), notice.url, "", notice.text))
        )
    return "\n\n".join(blocks) + "\n"


def print_licenses(stream: IO[str] | None = None) -> None:
    """Write every bundled license notice to ``stream`` (stdout by default)."""

    target = stream if stream is not None else sys.stdout
    target.write(format_notices())
    target.flush()


__all__ = ["LicenseNotice", "THIRD_PARTY_NOTICES", "format_notices", "print_licenses"]
