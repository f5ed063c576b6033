import numpy as np

from tilesynth.tiles import ConfigError, ExtractionError


class ArraySource:
    """An image held as a (height, width, 3) array of RGB triples."""

    def __init__(self, pixels):
        pixels = np.asarray(pixels, dtype=np.uint8)
        if pixels.ndim != 3 or pixels.shape[2] < 3:
            raise ExtractionError(
                f"expected a (height, width, 3) pixel array, got {pixels.shape}"
            )
        self.pixels = pixels[:, :, :3]

    def dimensions(self):
        height, width = self.pixels.shape[:2]
        return width, height

    def pixel_at(self, x, y):
        return tuple(int(c) for c in self.pixels[y, x])


def load_image(filename):
    from PIL import Image, UnidentifiedImageError

    try:
        with Image.open(filename) as image:
            return ArraySource(np.array(image.convert("RGB")))
    except UnidentifiedImageError as e:
        raise ConfigError(str(e)) from None
    except OSError as e:
        raise ConfigError(f"can't read sample image: {e}") from None


def parse_sample(string, alphabet):
    """
    Build a sample from rows of tile letters, e.g. "WWC/WCG/CGG".

    Rows are separated by "/" or newlines, spaces are ignored.
    """
    rows = []
    row = []

    for char in string:
        if char in ("/", "\n"):
            if row:
                rows.append(row)
            row = []
        elif char.isspace():
            continue
        else:
            row.append(alphabet.from_char(char).rgb)
    if row:
        rows.append(row)

    if not rows:
        raise ExtractionError("sample has no tiles")

    width = len(rows[0])
    for i, row in enumerate(rows):
        if len(row) != width:
            raise ExtractionError(
                f"row {i} has {len(row)} tiles, expected {width} like the first row"
            )

    return ArraySource(np.array(rows, dtype=np.uint8))


def load_sample(filename, alphabet):
    if str(filename).endswith(".txt"):
        try:
            with open(filename, encoding="utf-8") as file:
                return parse_sample(file.read(), alphabet)
        except OSError as e:
            raise ConfigError(f"can't read sample: {e}") from None
    return load_image(filename)
