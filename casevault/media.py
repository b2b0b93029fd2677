from pathlib import Path
from uuid import uuid4

from PIL import Image, UnidentifiedImageError
from werkzeug.utils import secure_filename


ROOT = Path(__file__).resolve().parent.parent
MEDIA = ROOT / "media"

IMAGE_MAX = 5 * 1024 * 1024
ALLOWED = {".jpg", ".jpeg", ".png", ".webp"}
# longest edge per upload kind; banners are wide, the rest are square cards
SIZES = {"case": (512, 512), "skin": (512, 512), "banner": (1280, 480)}


def configure(directory) -> Path:
    global MEDIA
    MEDIA = Path(directory)
    return MEDIA


def saveimage(file, kind: str) -> str:
    """Store an uploaded picture under media/<kind>s/ and return its public path."""
    if kind not in SIZES:
        raise ValueError("invalid_kind")
    ext = Path(secure_filename(file.filename or "")).suffix.lower()
    if ext not in ALLOWED:
        raise ValueError("invalid_image")
    folder = MEDIA / f"{kind}s"
    folder.mkdir(parents=True, exist_ok=True)
    name = f"{uuid4().hex}{ext}"
    out = folder / name
    file.save(out)
    if out.stat().st_size > IMAGE_MAX:
        out.unlink(missing_ok=True)
        raise ValueError("image_too_large")
    try:
        with Image.open(out) as img:
            img.load()
            if kind != "banner":
                side = min(img.width, img.height)
                left = (img.width - side) // 2
                top = (img.height - side) // 2
                img = img.crop((left, top, left + side, top + side))
            img.thumbnail(SIZES[kind])
            if ext in {".jpg", ".jpeg"} and img.mode not in {"RGB", "L"}:
                img = img.convert("RGB")
            img.save(out)
    except (UnidentifiedImageError, OSError) as exc:
        out.unlink(missing_ok=True)
        raise ValueError("invalid_image") from exc
    return f"/media/{kind}s/{name}"
