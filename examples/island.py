from tilesynth import *

setup_logging(logging.INFO)

generation = learn(
    load_sample("resources/island.txt", DEFAULT_ALPHABET), rotate_rules=True
)

grid = synthesize(generation, 40, 30, seed=1)
print(render_text(grid))
save_image("island.png", grid, scale=8)
