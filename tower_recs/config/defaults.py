"""Model / training defaults used across the library and the CLI."""

GENRES = [
    "Unknown", "Action", "Adventure", "Animation", "Children's",
    "Comedy", "Crime", "Documentary", "Drama", "Fantasy",
    "Film-Noir", "Horror", "Musical", "Mystery", "Romance",
    "Sci-Fi", "Thriller", "War", "Western",
]
NUM_GENRES = len(GENRES)

# labels
POSITIVE_THRESHOLD = 4  # rating >= threshold -> label 1

# negative sampling
NEGATIVE_RATIO = 1.0  # negatives per positive
NEGATIVE_ATTEMPT_FACTOR = 5  # attempt budget = target * factor

# towers
EMBEDDING_DIM = 32
MLP_HIDDEN_DIM = 64
DEEP_HIDDEN_DIMS = (128, 64)
DEEP_DROPOUT = 0.3
DEEP_L2 = 0.01

# training
LEARNING_RATE = 1e-3
EPOCHS = 5
BATCH_SIZE = 32
RANDOM_SEED = 42

# evaluation
TOP_K = 10
EVAL_K = 5


def genre_names(vector) -> list[str]:
    """Names of the genres flagged in a 0/1 genre vector."""
    return [name for name, flag in zip(GENRES, vector) if flag]
