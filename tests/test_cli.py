import contextlib
import io
import logging
import os
import tempfile
import unittest
from unittest import mock

import numpy as np
from PIL import Image

from tilesynth import *

WATER = DEFAULT_ALPHABET["water"]
COAST = DEFAULT_ALPHABET["coast"]


def write_sample(directory, text, name="island.txt"):
    filename = os.path.join(directory, name)
    with open(filename, "w", encoding="utf-8") as file:
        file.write(text)
    return filename


def run_quietly(argv):
    stdout = io.StringIO()
    with contextlib.redirect_stdout(stdout), contextlib.redirect_stderr(io.StringIO()):
        status = run(argv)
    return status, stdout.getvalue()


class RenderTest(unittest.TestCase):
    def test_text(self):
        grid = Grid(3, 1)
        grid[0, 0] = Revealed(WATER)
        grid[1, 0] = Revealed(DEFAULT_ALPHABET.invalid)
        self.assertEqual(
            render_text(grid), WATER.glyph + DEFAULT_ALPHABET.invalid.glyph + HIDDEN_GLYPH
        )
        self.assertEqual(len({WATER.glyph, DEFAULT_ALPHABET.invalid.glyph, HIDDEN_GLYPH}), 3)

    def test_image(self):
        grid = Grid(2, 1)
        grid[0, 0] = Revealed(COAST)
        image = grid_image(grid, scale=3)
        self.assertEqual(image.shape, (3, 6, 3))
        self.assertEqual(tuple(image[0, 0]), COAST.rgb)
        self.assertEqual(tuple(image[2, 5]), HIDDEN_RGB)

    def test_save_image(self):
        grid = synthesize(
            learn(parse_sample("WC/CG", DEFAULT_ALPHABET)), 4, 2, seed=0
        )
        with tempfile.TemporaryDirectory() as directory:
            filename = os.path.join(directory, "out.png")
            save_image(filename, grid, scale=2)
            with Image.open(filename) as image:
                self.assertEqual(image.size, (8, 4))
                pixels = np.array(image.convert("RGB"))
        self.assertTrue((pixels[::2, ::2] == grid_image(grid)).all())

    def test_largest_alphabet(self):
        tiles = [
            (f"t{i}", (i + 1, 0, 1), chr(0x100 + i), "t") for i in range(MAX_TILES)
        ]
        alphabet = TileAlphabet(tiles, DEFAULT_INVALID)
        grid = Grid(3, 1)
        grid[0, 0] = Revealed(alphabet.invalid)
        grid[1, 0] = Revealed(alphabet.tiles[-1])
        image = grid_image(grid, alphabet)
        self.assertEqual(tuple(image[0, 0]), alphabet.invalid.rgb)
        self.assertEqual(tuple(image[0, 1]), alphabet.tiles[-1].rgb)
        self.assertEqual(tuple(image[0, 2]), HIDDEN_RGB)


def fake_ffmpeg(patched_input):
    chain = patched_input.return_value.output.return_value.global_args.return_value
    return chain.overwrite_output.return_value.run_async


class FfmpegWriterTest(unittest.TestCase):
    @mock.patch("ffmpeg.input")
    def test_skip(self, patched_input):
        process = fake_ffmpeg(patched_input).return_value
        writer = FfmpegWriter("out.avi", (3, 2), skip=2, scale=2)
        patched_input.assert_called_once()
        self.assertEqual(patched_input.call_args.kwargs["s"], "6x4")

        grid = Grid(3, 2)
        for _ in range(5):
            writer.write(grid)
        writer.close()

        self.assertEqual(process.stdin.write.call_count, 3)
        frame = process.stdin.write.call_args.args[0]
        self.assertEqual(len(frame), 6 * 4 * 3)
        process.stdin.close.assert_called_once()
        process.wait.assert_called_once()


class LoggingTest(unittest.TestCase):
    def test_setup_twice(self):
        setup_logging()
        logger = setup_logging("DEBUG")
        self.assertEqual(len(logger.handlers), 1)
        self.assertEqual(logger.level, logging.DEBUG)
        setup_logging()


class ArgsTest(unittest.TestCase):
    def test_defaults(self):
        args = parse_args(["sample.png"])
        self.assertEqual(args.dims, [20, 20])
        self.assertTrue(args.rotate)
        self.assertIsNone(args.seed)
        self.assertEqual(args.resources, "resources")

    def test_dims(self):
        self.assertEqual(parse_args(["s", "-d", "5", "3"]).dims, [5, 3])
        self.assertFalse(parse_args(["s", "--no-rotate"]).rotate)
        with contextlib.redirect_stderr(io.StringIO()):
            with self.assertRaises(SystemExit):
                parse_args(["s", "-d", "0"])

    def test_resolve(self):
        with tempfile.TemporaryDirectory() as directory:
            filename = write_sample(directory, "WC")
            self.assertEqual(resolve_sample(filename), filename)
            self.assertEqual(
                resolve_sample("island.txt", resources=directory), filename
            )
            with self.assertRaises(ConfigError):
                resolve_sample("other.txt", resources=directory)


class RunTest(unittest.TestCase):
    def test_prints_grid(self):
        with tempfile.TemporaryDirectory() as directory:
            write_sample(directory, "WWC\nWCG\nCGG\n")
            status, output = run_quietly(
                ["island.txt", "--resources", directory, "-d", "6", "4", "-s", "1"]
            )

        self.assertEqual(status, 0)
        lines = output.splitlines()
        self.assertEqual(len(lines), 4)
        for line in lines:
            self.assertEqual(len(line), 6)

    def test_writes_image(self):
        cwd = os.getcwd()
        with tempfile.TemporaryDirectory() as directory:
            sample = write_sample(directory, "WWC\nWCG\nCGG\n")
            os.chdir(directory)
            try:
                status, _ = run_quietly([sample, "-d", "5", "-i", "--scale", "2"])
                with Image.open("island.png") as image:
                    size = image.size
            finally:
                os.chdir(cwd)

        self.assertEqual(status, 0)
        self.assertEqual(size, (10, 10))

    def test_custom_tiles(self):
        with tempfile.TemporaryDirectory() as directory:
            tiles = os.path.join(directory, "tiles.xml")
            with open(tiles, "w", encoding="utf-8") as file:
                file.write(
                    '<tiles><tile name="a" colour="101010" char="A" glyph="a"/>'
                    '<tile name="b" colour="ffffff" char="B" glyph="b"/></tiles>'
                )
            sample = write_sample(directory, "AB\nBA\n", name="check.txt")
            status, output = run_quietly([sample, "-t", tiles, "-d", "3", "-s", "0"])

        self.assertEqual(status, 0)
        self.assertEqual(set(output.replace("\n", "")), {"a", "b"})

    @mock.patch("ffmpeg.input")
    def test_missing_ffmpeg(self, patched_input):
        fake_ffmpeg(patched_input).side_effect = FileNotFoundError("ffmpeg")
        with tempfile.TemporaryDirectory() as directory:
            sample = write_sample(directory, "WWC\nWCG\nCGG\n")
            status, output = run_quietly([sample, "-d", "4", "-v"])

        self.assertEqual(status, 1)
        self.assertEqual(output, "")

    @mock.patch("ffmpeg.input")
    def test_video_closed_when_ffmpeg_dies(self, patched_input):
        process = fake_ffmpeg(patched_input).return_value
        process.stdin.write.side_effect = BrokenPipeError("ffmpeg exited")
        with tempfile.TemporaryDirectory() as directory:
            sample = write_sample(directory, "WWC\nWCG\nCGG\n")
            status, _ = run_quietly([sample, "-d", "4", "-v"])

        self.assertEqual(status, 1)
        process.stdin.close.assert_called_once()
        process.wait.assert_called_once()

    def test_errors(self):
        with tempfile.TemporaryDirectory() as directory:
            write_sample(directory, "WQ", name="bad.txt")
            self.assertEqual(run_quietly(["missing.txt", "--resources", directory])[0], 1)
            self.assertEqual(run_quietly(["bad.txt", "--resources", directory])[0], 1)


if __name__ == "__main__":
    unittest.main()
