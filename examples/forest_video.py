from tilesynth import *

tiles = load_tiles("resources/tiles.xml")
generation = learn(load_sample("resources/forest.txt", tiles), tiles)

dims = (64, 36)
writer = FfmpegWriter("forest.avi", dims, tiles, skip=4, scale=10)
grid = synthesize(generation, *dims, seed=3, callback=writer.write)
writer.close()

print(render_text(grid, tiles))
print(f"{grid.count(tiles.invalid)} cells ran out of candidates")
