import logging

import numpy as np

from tilesynth.tiles import DEFAULT_ALPHABET

logger = logging.getLogger(__name__)

DIRECTIONS = ["up", "down", "left", "right"]

# Rows grow downwards, so up is negative y.
DELTAS = {"up": (0, -1), "down": (0, 1), "left": (-1, 0), "right": (1, 0)}

FLIPPED = {"up": "down", "down": "up", "left": "right", "right": "left"}

MAX_FREQUENCY = 2**32 - 1

# Value used in `Grid.values()` for cells that haven't been revealed.
HIDDEN_VALUE = 255


def rot(d):
    if d == "up":
        return "right"
    if d == "right":
        return "down"
    if d == "down":
        return "left"
    if d == "left":
        return "up"
    raise ValueError(f"unknown direction {d!r}")


class Rule:
    """`frm` may have `to` as its neighbour in `direction`."""

    __slots__ = ("frm", "to", "direction")

    def __init__(self, frm, to, direction):
        self.frm = frm
        self.to = to
        self.direction = direction

    def mirror(self):
        return Rule(self.to, self.frm, FLIPPED[self.direction])

    def __eq__(self, other):
        if not isinstance(other, Rule):
            return NotImplemented
        return (self.frm, self.to, self.direction) == (
            other.frm,
            other.to,
            other.direction,
        )

    def __hash__(self):
        return hash((self.frm, self.to, self.direction))

    def __repr__(self):
        return f"Rule({self.frm}, {self.to}, {self.direction})"


def tiles_in_rules(rules):
    tiles = set()
    for rule in rules:
        tiles.add(rule.frm)
        tiles.add(rule.to)
    return tiles


class Generation:
    """
    Everything learned from a sample: the adjacency rules, how often each tile
    was seen, and the tile to fall back to when a cell has nothing left.

    Read-only once built.
    """

    def __init__(self, rules, frequencies, invalid=DEFAULT_ALPHABET.invalid):
        self.rules = frozenset(rules)
        self.frequencies = dict(frequencies)
        self.invalid = invalid

        allowed = {}
        for rule in self.rules:
            allowed.setdefault((rule.frm, rule.direction), set()).add(rule.to)
        self._allowed = {key: frozenset(tiles) for key, tiles in allowed.items()}
        self._tiles = frozenset(tiles_in_rules(self.rules))

    def tiles(self):
        return set(self._tiles)

    def allowed(self, tile, direction):
        return self._allowed.get((tile, direction), frozenset())

    def __repr__(self):
        return f"Generation({len(self.rules)} rules, frequencies={self.frequencies})"


def add_rule(rules, rule, rotate_rules=False):
    rules.add(rule)
    rules.add(rule.mirror())

    if rotate_rules:
        direction = rule.direction
        for _ in range(3):
            direction = rot(direction)
            rotated = Rule(rule.frm, rule.to, direction)
            rules.add(rotated)
            rules.add(rotated.mirror())


def add_frequency(frequencies, tile):
    frequencies[tile] = min(frequencies.get(tile, 0) + 1, MAX_FREQUENCY)


def classify_sample(source, alphabet):
    width, height = source.dimensions()
    return [
        [alphabet.classify(source.pixel_at(x, y)) for x in range(width)]
        for y in range(height)
    ]


def learn(source, alphabet=DEFAULT_ALPHABET, rotate_rules=False):
    # Classify everything up front so an unknown colour aborts before any
    # rules exist.
    tiles = classify_sample(source, alphabet)
    width, height = source.dimensions()

    rules = set()
    frequencies = {}

    for y in range(height):
        for x in range(width):
            frm = tiles[y][x]
            for direction in DIRECTIONS:
                dx, dy = DELTAS[direction]
                nx, ny = x + dx, y + dy
                if not (0 <= nx < width and 0 <= ny < height):
                    continue
                add_rule(rules, Rule(frm, tiles[ny][nx], direction), rotate_rules)
            add_frequency(frequencies, frm)

    for tile in tiles_in_rules(rules):
        frequencies.setdefault(tile, 0)

    logger.info(
        "learned %d rules over %d tile types from a %dx%d sample",
        len(rules),
        len(frequencies),
        width,
        height,
    )
    return Generation(rules, frequencies, invalid=alphabet.invalid)


class Hidden:
    __slots__ = ("candidates",)

    def __init__(self, candidates):
        self.candidates = set(candidates)

    def __eq__(self, other):
        return isinstance(other, Hidden) and self.candidates == other.candidates

    def __repr__(self):
        names = sorted(str(tile) for tile in self.candidates)
        return f"Hidden({{{', '.join(names)}}})"


class Revealed:
    __slots__ = ("tile",)

    def __init__(self, tile):
        self.tile = tile

    def __eq__(self, other):
        return isinstance(other, Revealed) and self.tile is other.tile

    def __repr__(self):
        return f"Revealed({self.tile})"


class Grid:
    """
    Row-major board of cells, indexed as `grid[x, y]` with x the column and
    y the row.
    """

    def __init__(self, width, height, candidates=()):
        if width < 0 or height < 0:
            raise ValueError(f"can't make a {width}x{height} grid")
        self.width = width
        self.height = height
        self.cells = [[Hidden(candidates) for _ in range(width)] for _ in range(height)]

    def in_bounds(self, x, y):
        return 0 <= x < self.width and 0 <= y < self.height

    def __getitem__(self, coord):
        x, y = coord
        if not self.in_bounds(x, y):
            raise IndexError(f"({x}, {y}) is outside a {self.width}x{self.height} grid")
        return self.cells[y][x]

    def __setitem__(self, coord, cell):
        x, y = coord
        if not self.in_bounds(x, y):
            raise IndexError(f"({x}, {y}) is outside a {self.width}x{self.height} grid")
        self.cells[y][x] = cell

    def coords(self):
        for y in range(self.height):
            for x in range(self.width):
                yield x, y

    def neighbour(self, x, y, direction):
        dx, dy = DELTAS[direction]
        nx, ny = x + dx, y + dy
        if not self.in_bounds(nx, ny):
            return None
        return nx, ny

    def all_revealed(self):
        return all(isinstance(self[coord], Revealed) for coord in self.coords())

    def count(self, tile):
        return sum(
            1
            for coord in self.coords()
            if isinstance(self[coord], Revealed) and self[coord].tile is tile
        )

    def values(self):
        values = np.full((self.height, self.width), HIDDEN_VALUE, dtype=np.uint8)
        for x, y in self.coords():
            cell = self.cells[y][x]
            if isinstance(cell, Revealed):
                values[y, x] = cell.tile.index
        return values


def narrow(source_tile, direction, rules, candidates):
    if isinstance(rules, Generation):
        allowed = rules.allowed(source_tile, direction)
    else:
        allowed = {
            rule.to
            for rule in rules
            if rule.frm is source_tile and rule.direction == direction
        }
    return set(candidates) & allowed


def choose_tile(candidates, frequencies, rng, invalid):
    """
    Pick a candidate with probability proportional to its frequency, the same
    as drawing uniformly from a pool holding `frequencies[tile]` copies of
    each tile.
    """
    if not candidates:
        return invalid

    # Sets of tiles don't iterate in a stable order, sort so seeds reproduce.
    tiles = sorted(candidates, key=lambda tile: tile.index)
    weights = np.array([frequencies.get(tile, 0) for tile in tiles], dtype=np.int64)
    total = int(weights.sum())
    if total == 0:
        return invalid

    index = rng.integers(total)
    return tiles[int(np.searchsorted(np.cumsum(weights), index, side="right"))]


def reveal(grid, x, y, generation, rng):
    cell = grid[x, y]
    if isinstance(cell, Revealed):
        return cell.tile

    tile = choose_tile(cell.candidates, generation.frequencies, rng, generation.invalid)
    if tile is generation.invalid:
        logger.debug("(%d, %d) has no usable candidates, using %s", x, y, tile)
    grid[x, y] = Revealed(tile)

    for direction in DIRECTIONS:
        coord = grid.neighbour(x, y, direction)
        if coord is None:
            continue
        neighbour = grid[coord]
        if isinstance(neighbour, Hidden):
            neighbour.candidates = narrow(
                tile, direction, generation, neighbour.candidates
            )

    return tile


def synthesize(generation, width, height, rng=None, seed=None, callback=None, skip=1):
    """
    Reveal every cell of a new `width` x `height` grid in row-major order.

    Each cell starts with every tile the rules mention as a candidate and only
    sees narrowing from neighbours revealed before it (above and to the
    left). `callback(grid)` is called after every `skip`-th reveal.
    """
    if skip <= 0:
        raise ValueError(f"skip must be positive, got {skip}")
    if rng is None:
        rng = np.random.default_rng(seed)

    grid = Grid(width, height, generation.tiles())
    exhausted = 0

    for i, (x, y) in enumerate(grid.coords()):
        if reveal(grid, x, y, generation, rng) is generation.invalid:
            exhausted += 1
        if callback is not None and i % skip == 0:
            callback(grid)

    level = logging.WARNING if exhausted else logging.INFO
    logger.log(
        level,
        "revealed %d cells, %d fell back to %s",
        width * height,
        exhausted,
        generation.invalid,
    )
    return grid
