"""
Read and render the Ruby formula files of the tap.

A formula is parsed into a ``Formula`` record, the record's release fields
are replaced, and the whole file is rendered again from a fixed template.
"""

import os
import re
from dataclasses import dataclass, replace
from typing import Optional

LICENSE = "MIT"
BUILD_DEPENDENCY = "rust"

FIELD_PATTERNS = {
    "desc": re.compile(r'^\s*desc\s+"(.+)"\s*$', re.MULTILINE),
    "homepage": re.compile(r'^\s*homepage\s+"(.+)"\s*$', re.MULTILINE),
    "url": re.compile(r'^\s*url\s+"(.+)"\s*$', re.MULTILINE),
    "sha256": re.compile(r'^\s*sha256\s+"([0-9a-fA-F]+)"\s*$', re.MULTILINE),
    "crate_path": re.compile(r'path:\s*"(.+?)"'),
    "arm64_sha256": re.compile(r'arm64_sonoma:\s*"([0-9a-fA-F]+)"'),
    "x86_64_sha256": re.compile(r'x86_64_sonoma:\s*"([0-9a-fA-F]+)"'),
}
URL_VERSION = re.compile(r"/v(\d+\.\d+\.\d+)\.tar\.gz$")


class FormulaError(Exception):
    """Raised when a formula file is missing or lacks required fields."""


@dataclass(frozen=True)
class Formula:
    name: str
    desc: str = ""
    homepage: str = ""
    crate_path: str = ""
    version: str = ""
    url: str = ""
    sha256: str = ""
    arm64_sha256: str = ""
    x86_64_sha256: str = ""

    @property
    def class_name(self) -> str:
        return class_name(self.name)

    def missing_fields(self):
        return [field for field in ("desc", "homepage") if not getattr(self, field)]

    def with_release(self, version: str, sha256: str, arm64_sha256: str,
                     x86_64_sha256: str, url: str = "") -> "Formula":
        return replace(
            self,
            version=version,
            url=url,
            sha256=sha256,
            arm64_sha256=arm64_sha256,
            x86_64_sha256=x86_64_sha256,
        )


def class_name(formula_name: str) -> str:
    """Ruby class name of a formula: "danny-cli" -> "DannyCli"."""
    return "".join(part.capitalize() for part in formula_name.split("-"))


def formula_name_from_path(path: str) -> str:
    """Formula name of a formula file: "Formula/danny.rb" -> "danny"."""
    return os.path.splitext(os.path.basename(path))[0]


def parse_formula(content: str, name: str) -> Formula:
    """
    Build a Formula record from the text of a formula file.

    Fields that cannot be found are left empty, except the crate path which
    defaults to ``crates/<name>-cli``.
    """
    values = {}
    for field, pattern in FIELD_PATTERNS.items():
        match = pattern.search(content)
        values[field] = match.group(1) if match else ""

    if not values["crate_path"]:
        values["crate_path"] = f"crates/{name}-cli"

    version_match = URL_VERSION.search(values["url"])
    values["version"] = version_match.group(1) if version_match else ""

    return Formula(name=name, **values)


def read_formula(path: str, name: Optional[str] = None) -> Formula:
    """
    Read and parse the formula at ``path``.

    Raises:
        FormulaError: if the file does not exist.
    """
    if not os.path.exists(path):
        raise FormulaError(f"Formula not found: {path}")
    with open(path, "r", encoding="utf-8") as f:
        content = f.read()
    return parse_formula(content, name or formula_name_from_path(path))


def render_formula(formula: Formula, repo: str) -> str:
    """
    Render the complete text of a formula file.

    Args:
        formula: Record with metadata and release fields filled in
        repo: GitHub repository, e.g. "foxworth-uni/danny"
    """
    missing = formula.missing_fields()
    if missing:
        raise FormulaError(f"Formula {formula.name} has no {', '.join(missing)}")

    url = formula.url or f"https://github.com/{repo}/archive/refs/tags/v{formula.version}.tar.gz"
    return f'''class {formula.class_name} < Formula
  desc "{formula.desc}"
  homepage "{formula.homepage}"
  url "{url}"
  sha256 "{formula.sha256}"
  license "{LICENSE}"
  head "https://github.com/{repo}.git", branch: "main"

  bottle do
    root_url "https://github.com/{repo}/releases/download/v{formula.version}"
    sha256 cellar: :any_skip_relocation, arm64_sonoma: "{formula.arm64_sha256}"
    sha256 cellar: :any_skip_relocation, x86_64_sonoma: "{formula.x86_64_sha256}"
  end

  depends_on "{BUILD_DEPENDENCY}" => :build

  def install
    system "cargo", "install", *std_cargo_args(path: "{formula.crate_path}")
  end

  test do
    assert_match "{formula.name}", shell_output("#{{bin}}/{formula.name} --help")
  end
end
'''


def write_formula(path: str, content: str) -> None:
    """
    Replace the whole content of the formula file at ``path``.

    Args:
        path: Path to the formula .rb file
        content: Full formula text, as returned by render_formula
    """
    with open(path, "w", encoding="utf-8") as f:
        f.write(content)
