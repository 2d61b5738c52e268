import argparse
import json
import logging
import math
import unicodedata
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from flask import Flask, abort, jsonify, render_template, request, send_file

# --------------------------------------------------------------------------------------
# Config
# --------------------------------------------------------------------------------------
HERO_DATA_FILE = "hero_data.json"          # resolved against the CWD at request time
HERO_IMAGES_DIR = "public/images/heroes"
HERO_IMAGE_URL = "/images/heroes/"
NAMES_URL = "/api/heronames"
COUNTERS_URL = "/api/counters?heroName="

MSG_NAMES_UNAVAILABLE = "Failed to load hero data."
MSG_COUNTERS_UNAVAILABLE = "Failed to load hero data source."
MSG_BAD_HERO_NAME = "Missing or invalid heroName query parameter"
MSG_HERO_NOT_FOUND = "ไม่พบข้อมูลของฮีโร่"

COUNTER_FIELDS = ("name", "type", "win_rate", "image")

log = logging.getLogger("counters_site")

# --------------------------------------------------------------------------------------
# App
# --------------------------------------------------------------------------------------
app = Flask(__name__)
app.config.update(
    HERO_DATA_FILE=HERO_DATA_FILE,
    HERO_IMAGES_DIR=HERO_IMAGES_DIR,
    HERO_DATA_CACHE=False,
)
app.config.from_prefixed_env("COUNTERS")

# --------------------------------------------------------------------------------------
# Errors
# --------------------------------------------------------------------------------------
class HeroLookupError(Exception):
    """Base for lookup failures that map onto an HTTP status."""

    status = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class DataUnavailable(HeroLookupError):
    status = 500


class ValidationError(HeroLookupError):
    status = 400


class TargetNotFound(HeroLookupError):
    status = 404

    def __init__(self, hero_name: str, message: str = MSG_HERO_NOT_FOUND):
        super().__init__(message)
        self.hero_name = hero_name


@app.errorhandler(HeroLookupError)
def handle_lookup_error(err: HeroLookupError):
    return jsonify({"error": err.message}), err.status

# --------------------------------------------------------------------------------------
# Logging
# --------------------------------------------------------------------------------------
def setup_logging(level: int = logging.INFO) -> None:
    logger = logging.getLogger()
    logger.setLevel(level)

    ch = logging.StreamHandler()
    ch.setLevel(level)
    ch.setFormatter(logging.Formatter("[%(levelname)s] %(message)s"))

    for h in list(logger.handlers):
        logger.removeHandler(h)
    logger.addHandler(ch)

# --------------------------------------------------------------------------------------
# Utils
# --------------------------------------------------------------------------------------
def parse_rate(rate_str: Any) -> float:
    """
    Turn a win rate like "54.3%" into 54.3 for ordering.
    Empty, missing, "N/A" and anything unparseable all come back as 0.0;
    the caller always displays the original string.
    """
    if not rate_str or rate_str == "N/A":
        return 0.0
    if not isinstance(rate_str, str):
        log.warning("Rate conversion failed for: %r", rate_str)
        return 0.0
    try:
        value = float(rate_str.replace("%", "").strip())
    except ValueError:
        log.warning("Rate conversion failed for: %s", rate_str)
        return 0.0
    if not math.isfinite(value):
        log.warning("Rate conversion failed for: %s", rate_str)
        return 0.0
    return value

def name_key(name: str) -> str:
    return name.lower()

def collation_key(name: str) -> str:
    """Accent- and case-insensitive sort key, so "Élandorr" sorts with the E's."""
    decomposed = unicodedata.normalize("NFKD", name)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch)).casefold()

def _is_record(entry: Any) -> bool:
    return isinstance(entry, dict)

def secure_path_under(root: Path, rel: str) -> Optional[Path]:
    rel = (rel or "").replace("\\", "/").lstrip("/")
    target = root.joinpath(*rel.split("/")).resolve()
    root_resolved = root.resolve()
    if target != root_resolved and root_resolved not in target.parents:
        return None
    if not target.is_file():
        return None
    return target

# --------------------------------------------------------------------------------------
# Data loading
# --------------------------------------------------------------------------------------
def data_path() -> Path:
    return Path.cwd() / app.config["HERO_DATA_FILE"]

def _read_hero_file(path: Path) -> Optional[List[Dict]]:
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        log.error("Error loading %s: %s", path, e)
        return None
    if not isinstance(data, list):
        log.error("Error loading %s: expected a JSON array, got %s", path, type(data).__name__)
        return None
    return data

@lru_cache(maxsize=4)
def _cached_hero_file(path_str: str, mtime_ns: int) -> Optional[List[Dict]]:
    # mtime_ns is part of the key only; an edited file gets a fresh entry
    return _read_hero_file(Path(path_str))

def load_hero_data(path: Optional[Path] = None) -> Optional[List[Dict]]:
    """
    Read the hero array from disk. Returns None if the file is missing,
    unreadable, not JSON, or not a JSON array.
    """
    path = path or data_path()
    if not app.config.get("HERO_DATA_CACHE"):
        return _read_hero_file(path)
    try:
        mtime_ns = path.stat().st_mtime_ns
    except OSError as e:
        log.error("Error loading %s: %s", path, e)
        return None
    return _cached_hero_file(str(path), mtime_ns)

def clear_cache_if_requested():
    if request.args.get("reload") == "1":
        _cached_hero_file.cache_clear()

def require_hero_data(message: str) -> List[Dict]:
    data = load_hero_data()
    if data is None:
        raise DataUnavailable(message)
    return data

# --------------------------------------------------------------------------------------
# Queries
# --------------------------------------------------------------------------------------
def list_names(dataset: List[Any]) -> List[Dict[str, Any]]:
    """{name, image} for every record that has both, sorted by name."""
    out = [
        {"name": h["name"], "image": h["image"]}
        for h in dataset
        if _is_record(h) and h.get("name") and h.get("image")
    ]

    def sort_key(entry: Dict[str, Any]) -> Tuple[str, str]:
        name = str(entry["name"])
        return (collation_key(name), name)

    out.sort(key=sort_key)
    return out

def find_hero(dataset: List[Any], hero_name: str) -> Optional[Dict]:
    wanted = name_key(hero_name)
    return next(
        (h for h in dataset
         if _is_record(h) and isinstance(h.get("name"), str) and name_key(h["name"]) == wanted),
        None,
    )

def _counters_target(entry: Dict, wanted: str) -> bool:
    return any(
        isinstance(n, str) and name_key(n) == wanted
        for n in entry["countered_heroes"]
    )

def resolve_counters(dataset: List[Any], hero_name: str) -> List[Dict[str, Any]]:
    """
    Heroes whose ``countered_heroes`` names ``hero_name``, best win rate first.

    ``hero_name`` must already be trimmed and non-empty. Raises TargetNotFound
    if no record carries that name. A hero can exist without being complete
    enough to show up as a counter itself; only complete records are scanned.
    """
    if find_hero(dataset, hero_name) is None:
        raise TargetNotFound(hero_name)

    wanted = name_key(hero_name)
    found: List[Dict[str, Any]] = []
    for entry in dataset:
        if not _is_record(entry):
            continue
        if not all(entry.get(f) for f in COUNTER_FIELDS):
            continue
        if not isinstance(entry.get("countered_heroes"), list):
            continue
        if _counters_target(entry, wanted):
            found.append({f: entry[f] for f in COUNTER_FIELDS})

    # sorted() is stable with reverse=True, scan order survives ties
    return sorted(found, key=lambda c: parse_rate(c["win_rate"]), reverse=True)

def hero_name_param() -> str:
    raw = request.args.get("heroName")
    if raw is None or not raw.strip():
        raise ValidationError(MSG_BAD_HERO_NAME)
    return raw.strip()

# --------------------------------------------------------------------------------------
# Assets
# --------------------------------------------------------------------------------------
@app.route("/images/heroes/<path:relpath>")
def serve_hero_image(relpath: str):
    full = secure_path_under(Path.cwd() / app.config["HERO_IMAGES_DIR"], relpath)
    if not full:
        abort(404)
    resp = send_file(str(full))
    resp.headers["Cache-Control"] = "public, max-age=31536000, immutable"
    return resp

# --------------------------------------------------------------------------------------
# Routes
# --------------------------------------------------------------------------------------
@app.route("/")
def home():
    clear_cache_if_requested()
    return render_template("index.html", **page_context())

def page_context(
    names_url: str = NAMES_URL,
    counters_url: str = COUNTERS_URL,
    counters_index_url: Optional[str] = None,
    image_base: str = HERO_IMAGE_URL,
) -> Dict[str, Any]:
    """
    URLs the search page fetches from. Served live, counters are looked up
    with ``counters_url + name``; in a static export ``counters_index_url``
    points at a lower-cased name -> file map and ``counters_url`` is the
    directory holding those files.
    """
    return {
        "names_url": names_url,
        "counters_url": counters_url,
        "counters_index_url": counters_index_url,
        "image_base": image_base,
        "not_found": MSG_HERO_NOT_FOUND,
    }

# -------- JSON APIs --------
@app.route("/api/heronames")
def api_hero_names():
    clear_cache_if_requested()
    data = require_hero_data(MSG_NAMES_UNAVAILABLE)
    return jsonify(list_names(data))

@app.route("/api/counters")
def api_counters():
    clear_cache_if_requested()
    hero_name = hero_name_param()
    data = require_hero_data(MSG_COUNTERS_UNAVAILABLE)
    return jsonify(resolve_counters(data, hero_name))

# --------------------------------------------------------------------------------------
# Main
# --------------------------------------------------------------------------------------
def main(argv: Optional[List[str]] = None) -> None:
    ap = argparse.ArgumentParser(description="Serve the hero counter finder.")
    ap.add_argument("--host", default="127.0.0.1")
    ap.add_argument("--port", type=int, default=5000)
    ap.add_argument("--debug", action="store_true", help="Flask debug mode with reloader")
    args = ap.parse_args(argv)

    setup_logging(logging.DEBUG if args.debug else logging.INFO)
    log.info("Serving hero data from: %s", data_path())
    log.info("Serving hero images from: %s", Path.cwd() / app.config["HERO_IMAGES_DIR"])
    app.run(host=args.host, port=args.port, debug=args.debug)

if __name__ == "__main__":
    main()
