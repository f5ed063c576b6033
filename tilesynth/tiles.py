from xml.parsers.expat import ExpatError
import numpy as np


# Output arrays hold tile indices as uint8 with 255 kept for hidden cells, so
# the tiles plus the sentinel must fit in 0..254.
MAX_TILES = 254

# Colour of hidden cells in image output, no tile may use it.
HIDDEN_RGB = (0, 0, 0)


class TilesynthError(Exception):
    pass


class ExtractionError(TilesynthError):
    pass


class ConfigError(TilesynthError):
    pass


class TileType:
    # Compared and hashed by identity, there's only ever one of each per alphabet.
    __slots__ = ("index", "name", "rgb", "char", "glyph")

    def __init__(self, index, name, rgb, char, glyph):
        self.index = index
        self.name = name
        self.rgb = tuple(int(c) for c in rgb)
        self.char = char
        self.glyph = glyph

    def __repr__(self):
        return self.name


# https://stackoverflow.com/a/29643643
def hex2rgb(h):
    h = h.lstrip("#")
    if len(h) != 6:
        raise ValueError(f"expected 6 hex digits, got {h!r}")
    return tuple(int(h[i : i + 2], 16) for i in (0, 2, 4))


class TileAlphabet:
    """
    The closed set of tile types a sample can be made of, plus the invalid
    sentinel used when a cell runs out of candidates.

    Tiles are given as (name, rgb, char, glyph) tuples. The sentinel always
    comes last, so its index is `len(tiles)`.
    """

    def __init__(self, tiles, invalid):
        tiles = list(tiles)
        if len(tiles) > MAX_TILES:
            raise ConfigError(
                f"{len(tiles)} tiles is too many, at most {MAX_TILES} are supported"
            )

        self.tiles = []
        self.by_rgb = {}
        self.by_char = {}

        for name, rgb, char, glyph in tiles + [invalid]:
            tile = TileType(len(self.tiles), name, rgb, char, glyph)
            if tile.rgb == HIDDEN_RGB:
                raise ConfigError(
                    f"{name}: colour {tile.rgb} is reserved for hidden cells"
                )
            if tile.rgb in self.by_rgb:
                raise ConfigError(
                    f"{name}: colour {tile.rgb} already used by {self.by_rgb[tile.rgb]}"
                )
            if char in self.by_char:
                raise ConfigError(
                    f"{name}: letter {char!r} already used by {self.by_char[char]}"
                )
            self.tiles.append(tile)
            self.by_rgb[tile.rgb] = tile
            self.by_char[char] = tile

        self.invalid = self.tiles.pop()
        # The sentinel is never a legal classification.
        del self.by_rgb[self.invalid.rgb]
        del self.by_char[self.invalid.char]

    def __iter__(self):
        return iter(self.tiles)

    def __len__(self):
        return len(self.tiles)

    def __getitem__(self, name):
        for tile in self.tiles + [self.invalid]:
            if tile.name == name:
                return tile
        raise KeyError(name)

    def all_tiles(self):
        return self.tiles + [self.invalid]

    def classify(self, rgb):
        rgb = tuple(int(c) for c in rgb[:3])
        try:
            return self.by_rgb[rgb]
        except KeyError:
            raise ExtractionError(f"no tile type for colour {rgb}") from None

    def from_char(self, char):
        try:
            return self.by_char[char]
        except KeyError:
            raise ExtractionError(f"no tile type for letter {char!r}") from None

    def palette(self):
        """RGB lookup table indexed by tile index."""
        return np.array([tile.rgb for tile in self.all_tiles()], dtype=np.uint8)


DEFAULT_TILES = [
    ("water", (63, 72, 204), "W", "\U0001f7e6"),
    ("coast", (255, 201, 14), "C", "\U0001f7e8"),
    ("grass", (34, 177, 76), "G", "\U0001f7e9"),
]
DEFAULT_INVALID = ("invalid", (255, 0, 0), "X", "\U0001f7e5")

DEFAULT_ALPHABET = TileAlphabet(DEFAULT_TILES, DEFAULT_INVALID)


def tile_from_xml(element, kind):
    if not isinstance(element, dict):
        raise ConfigError(f"{kind} has no attributes")

    for attr in ("@name", "@colour", "@char"):
        if attr not in element:
            raise ConfigError(f"{kind} is missing the {attr[1:]} attribute")

    name = element["@name"]
    try:
        rgb = hex2rgb(element["@colour"])
    except ValueError as e:
        raise ConfigError(f"{name}: {e}") from None

    char = element["@char"]
    if len(char) != 1:
        raise ConfigError(f"{name}: letter must be a single character, got {char!r}")

    glyph = element["@glyph"] if "@glyph" in element else char
    return (name, rgb, char, glyph)


def load_tiles(filename):
    import xmltodict

    try:
        with open(filename, encoding="utf-8") as file:
            parsed = xmltodict.parse(file.read(), force_list=["tile"])
    except OSError as e:
        raise ConfigError(f"can't read tile table: {e}") from None
    except ExpatError as e:
        raise ConfigError(f"{filename}: {e}") from None

    if "tiles" not in parsed or not parsed["tiles"] or "tile" not in parsed["tiles"]:
        raise ConfigError(f"{filename}: expected a <tiles> element with <tile> entries")
    parsed = parsed["tiles"]

    tiles = [tile_from_xml(tile, "tile") for tile in parsed["tile"]]

    invalid = DEFAULT_INVALID
    if "invalid" in parsed:
        invalid = tile_from_xml(parsed["invalid"], "invalid")

    return TileAlphabet(tiles, invalid)
