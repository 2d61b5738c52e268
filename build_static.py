#!/usr/bin/env python3
import argparse
import json
import logging
import re
import shutil
from pathlib import Path
from typing import Dict, List, Optional, Set

import counters_site as site
from flask import render_template

log = logging.getLogger("build_static")

SLUG_RE = re.compile(r"[^0-9a-z฀-๿_-]+")

def ensure_clean_dir(p: Path):
    if p.exists():
        shutil.rmtree(p)
    p.mkdir(parents=True, exist_ok=True)

def hero_slug(name: str) -> str:
    return SLUG_RE.sub("-", name.lower()).strip("-") or "hero"

def write_json(path: Path, payload) -> None:
    path.write_text(json.dumps(payload, ensure_ascii=False), encoding="utf-8")

COUNTERS_INDEX = "index"

def unique_slug(name: str, used: Set[str]) -> str:
    base = hero_slug(name)
    slug, n = base, 2
    while slug in used:
        slug = f"{base}-{n}"
        n += 1
    used.add(slug)
    return slug

def counter_files(heroes: List) -> Dict[str, str]:
    """
    Lower-cased hero name -> counters file name. Names that only differ in
    case share a file since lookups ignore case; slug clashes get a suffix.
    """
    used = {COUNTERS_INDEX}
    files: Dict[str, str] = {}
    for h in heroes:
        name = h.get("name") if isinstance(h, dict) else None
        if not isinstance(name, str) or not name:
            continue
        key = site.name_key(name)
        if key not in files:
            files[key] = f"{unique_slug(name, used)}.json"
    return files

def build(dist: Path, data_file: Optional[Path] = None) -> int:
    """Export the page and both APIs as static files. Returns the number of counter files."""
    heroes = site.load_hero_data(data_file)
    if heroes is None:
        raise site.DataUnavailable(site.MSG_COUNTERS_UNAVAILABLE)

    ensure_clean_dir(dist)
    api = dist / "api"
    (api / "counters").mkdir(parents=True, exist_ok=True)

    images = Path.cwd() / site.app.config["HERO_IMAGES_DIR"]
    if images.exists():
        shutil.copytree(images, dist / "images" / "heroes", dirs_exist_ok=True)
    else:
        log.warning("Hero images not found at %s", images)

    # relative URLs so the export works from any base path
    context = site.page_context(
        names_url="api/heronames.json",
        counters_url="api/counters/",
        counters_index_url=f"api/counters/{COUNTERS_INDEX}.json",
        image_base="images/heroes/",
    )
    with site.app.app_context():
        html = render_template("index.html", **context)
    (dist / "index.html").write_text(html, encoding="utf-8")

    write_json(api / "heronames.json", site.list_names(heroes))
    files = counter_files(heroes)
    write_json(api / "counters" / f"{COUNTERS_INDEX}.json", files)
    for key, fname in files.items():
        write_json(api / "counters" / fname, site.resolve_counters(heroes, key))

    log.info("Built %d heroes -> %s", len(files), dist)
    return len(files)

def main(argv=None):
    ap = argparse.ArgumentParser(description="Export the counter finder as static files.")
    ap.add_argument("--dist", type=Path, default=Path("dist"))
    args = ap.parse_args(argv)
    site.setup_logging()
    build(args.dist)

if __name__ == "__main__":
    main()
