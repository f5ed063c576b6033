from tilesynth.tiles import *
from tilesynth.sample import *
from tilesynth.wfc import *
import numpy as np
import argparse
import logging
import os
import sys

logger = logging.getLogger(__name__)

HIDDEN_GLYPH = "⬜"


def setup_logging(level=logging.WARNING):
    root_logger = logging.getLogger("tilesynth")
    root_logger.setLevel(level)
    # Clear any existing handlers so calling this twice doesn't double up.
    root_logger.handlers.clear()

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        logging.Formatter(fmt="%(levelname)-8s | %(name)-20s | %(message)s")
    )
    root_logger.addHandler(handler)
    return root_logger


def render_text(grid, alphabet=DEFAULT_ALPHABET):
    glyphs = {tile: tile.glyph for tile in alphabet.all_tiles()}
    lines = []
    for y in range(grid.height):
        line = ""
        for x in range(grid.width):
            cell = grid[x, y]
            if isinstance(cell, Revealed):
                line += glyphs.get(cell.tile, alphabet.invalid.glyph)
            else:
                line += HIDDEN_GLYPH
        lines.append(line)
    return "\n".join(lines)


def colour_image(buffer, values, alphabet=DEFAULT_ALPHABET):
    lookup = np.zeros((256, 3), dtype=np.uint8)
    lookup[: len(alphabet) + 1] = alphabet.palette()
    lookup[HIDDEN_VALUE] = HIDDEN_RGB
    buffer[:] = lookup[values]
    return buffer


def grid_image(grid, alphabet=DEFAULT_ALPHABET, scale=1):
    buffer = np.zeros((grid.height, grid.width, 3), dtype=np.uint8)
    colour_image(buffer, grid.values(), alphabet)
    if scale != 1:
        buffer = buffer.repeat(scale, axis=0).repeat(scale, axis=1)
    return buffer


def save_image(filename, grid, alphabet=DEFAULT_ALPHABET, scale=1):
    from PIL import Image

    Image.fromarray(grid_image(grid, alphabet, scale)).save(filename)


class FfmpegWriter:
    def __init__(
        self, filename, dims, alphabet=DEFAULT_ALPHABET, skip=1, framerate=60, scale=1
    ):
        import ffmpeg

        width, height = dims

        self.process = (
            ffmpeg.input(
                "pipe:",
                format="rawvideo",
                pix_fmt="rgb24",
                s="{}x{}".format(width * scale, height * scale),
                framerate=framerate,
            )
            .output(filename, crf=0, vcodec="libx264", preset="ultrafast")
            .global_args("-hide_banner")
            .overwrite_output()
            .run_async(pipe_stdin=True)
        )

        self.alphabet = alphabet
        self.scale = scale
        self.skip = skip
        self.index = 0

    def write(self, grid):
        if self.index % self.skip == 0:
            frame = grid_image(grid, self.alphabet, self.scale)
            self.process.stdin.write(frame.tobytes())
        self.index += 1

    def close(self):
        self.process.stdin.close()
        self.process.wait()


def resolve_sample(name, resources="resources"):
    if os.path.exists(name):
        return name
    path = os.path.join(resources, name)
    if os.path.exists(path):
        return path
    raise ConfigError(f"can't find sample {name!r} here or in {resources!r}")


def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        prog="tilesynth",
        description="Generate a tile grid that looks locally like a sample image.",
    )
    parser.add_argument("sample", help="sample image, or a .txt file of tile letters")
    parser.add_argument("-d", "--dims", nargs="+", type=int, default=[20])
    parser.add_argument(
        "-r", "--rotate", action=argparse.BooleanOptionalAction, default=True
    )
    parser.add_argument("-s", "--seed", type=int, default=None)
    parser.add_argument("-t", "--tiles", help="XML tile table")
    parser.add_argument("--resources", default="resources")
    parser.add_argument("-i", "--image", action=argparse.BooleanOptionalAction)
    parser.add_argument("-v", "--video", action=argparse.BooleanOptionalAction)
    parser.add_argument("--skip", type=int, default=1)
    parser.add_argument("--scale", type=int, default=8)
    parser.add_argument(
        "--log-level",
        type=str.upper,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="WARNING",
    )
    args = parser.parse_args(argv)

    args.dims = args.dims[:2]
    if len(args.dims) == 1:
        args.dims = args.dims * 2
    if any(dim <= 0 for dim in args.dims):
        parser.error("dims must be positive")
    if args.skip <= 0 or args.scale <= 0:
        parser.error("skip and scale must be positive")

    return args


def run(argv=None):
    args = parse_args(argv)
    setup_logging(args.log_level)

    try:
        alphabet = load_tiles(args.tiles) if args.tiles else DEFAULT_ALPHABET
        sample_path = resolve_sample(args.sample, args.resources)
        generation = learn(
            load_sample(sample_path, alphabet), alphabet, rotate_rules=args.rotate
        )
    except TilesynthError as e:
        logger.error("%s", e)
        return 1

    name = os.path.splitext(os.path.basename(sample_path))[0]
    width, height = args.dims

    writer = None
    try:
        if args.video:
            writer = FfmpegWriter(
                f"{name}.avi",
                (width, height),
                alphabet,
                skip=args.skip,
                scale=args.scale,
            )

        grid = synthesize(
            generation,
            width,
            height,
            seed=args.seed,
            callback=writer.write if writer is not None else None,
        )
    except OSError as e:
        # Missing ffmpeg binary, or ffmpeg exiting while frames are written.
        logger.error("can't record video: %s", e)
        return 1
    finally:
        if writer is not None:
            writer.close()

    print(render_text(grid, alphabet))

    if args.image:
        filename = f"{name}.png"
        logger.info("writing %s", filename)
        save_image(filename, grid, alphabet, scale=args.scale)

    return 0
