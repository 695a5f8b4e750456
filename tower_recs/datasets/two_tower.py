"""PyTorch dataset (user, item, genres, label) for Two-Tower."""

import numpy as np
import torch
from torch.utils.data import Dataset


class InteractionDataset(Dataset):
    def __init__(self, df, genre_matrix: np.ndarray):
        self.u = torch.tensor(df["user_id"].values, dtype=torch.long)
        self.i = torch.tensor(df["item_id"].values, dtype=torch.long)
        self.y = torch.tensor(df["label"].values, dtype=torch.float32)
        # per-item lookup so each example doesn't carry its own copy
        self.genres = torch.as_tensor(genre_matrix, dtype=torch.float32)

    def __len__(self):
        return len(self.y)

    def __getitem__(self, idx):
        item = self.i[idx]
        return {
            "user": self.u[idx],
            "item": item,
            "genres": self.genres[item],
            "label": self.y[idx],
        }
