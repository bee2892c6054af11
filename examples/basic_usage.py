import logging
import time
from concurrent.futures import ThreadPoolExecutor

import numpy as np
import matplotlib.pyplot as plt
from sklearn.datasets import make_moons

from clear_neurons import DataInfo, ModelInfo, Network, Parameters

# --- Plotting Function ---

def plot_decision_boundary(X: np.ndarray, y_raw: np.ndarray, network: Network):
    """Plots the decision boundary of a trained network.

    Args:
        X: Input features used for training, shape (n_samples, 2), normalized.
        y_raw: Integer class labels, shape (n_samples,).
        network: Trained Network instance.
    """
    h = 0.05  # Step size in the mesh

    x_min, x_max = X[:, 0].min() - 0.5, X[:, 0].max() + 0.5
    y_min, y_max = X[:, 1].min() - 0.5, X[:, 1].max() + 0.5
    xx, yy = np.meshgrid(np.arange(x_min, x_max, h),
                         np.arange(y_min, y_max, h))

    mesh_points = np.c_[xx.ravel(), yy.ravel()]
    Z = np.array([np.argmax(network.predict_row(0, p, 0, [])) for p in mesh_points])
    Z = Z.reshape(xx.shape)

    plt.figure(figsize=(10, 8))
    plt.contourf(xx, yy, Z, cmap=plt.cm.Spectral, alpha=0.8)
    plt.scatter(X[:, 0], X[:, 1], c=y_raw, cmap=plt.cm.Spectral, edgecolor='k', s=35)
    plt.xlabel("Feature 1 (Normalized)")
    plt.ylabel("Feature 2 (Normalized)")
    plt.title("Decision Boundary")
    plt.xlim(xx.min(), xx.max())
    plt.ylim(yy.min(), yy.max())
    plt.grid(True, alpha=0.2)


# --- Make Moons Example ---

def make_moons_example(n_workers: int = 2, epochs: int = 30):
    """Trains several Hogwild workers on one shared model for the 'make_moons' dataset."""
    logger = logging.getLogger("MakeMoonsExample")

    logger.info("Generating make_moons dataset...")
    X_original, y_raw = make_moons(n_samples=300, noise=0.1, random_state=42)

    X_mean = X_original.mean(axis=0)
    X_std = X_original.std(axis=0)
    X = (X_original - X_mean) / (X_std + 1e-8)

    params = Parameters(hidden=[16, 16], activation='Tanh', seed=42, rate_annealing=0.0)
    dinfo = DataInfo.numeric(2)
    minfo = ModelInfo(params, [dinfo.input_units(), 16, 16, 2]).randomize_weights()
    workers = [Network(params, dinfo, minfo, training=True) for _ in range(n_workers)]
    print(workers[0].summary())

    def run_worker(w: int, epoch: int) -> float:
        # each worker sees its own interleaved slice of the rows
        network = workers[w]
        losses = []
        for i in range(w, X.shape[0], n_workers):
            seed = epoch * X.shape[0] + i
            losses.append(network.train_row(seed, X[i], 0, [], int(y_raw[i])))
        return float(np.mean(losses))

    logger.info(f"Starting training with {n_workers} workers...")
    history = {'epoch': [], 'loss': []}
    start_time = time.time()
    with ThreadPoolExecutor(max_workers=n_workers) as pool:
        for epoch in range(epochs):
            losses = list(pool.map(lambda w: run_worker(w, epoch), range(n_workers)))
            history['epoch'].append(epoch)
            history['loss'].append(float(np.mean(losses)))
            if epoch % 5 == 0:
                logger.info(f"Epoch {epoch}: loss={history['loss'][-1]:.4f}, "
                            f"processed={minfo.get_processed_total():,}")
    logger.info(f"Training finished in {time.time() - start_time:.2f} seconds")

    scorer = Network(params, dinfo, minfo, training=False)
    predictions = np.array([np.argmax(scorer.predict_row(0, x, 0, [])) for x in X])
    logger.info(f"Training accuracy: {np.mean(predictions == y_raw):.2%}")

    plt.figure("Make Moons Training History", figsize=(8, 5))
    plt.plot(history['epoch'], history['loss'], label='Training Loss')
    plt.xlabel('Epoch')
    plt.ylabel('Loss (CE)')
    plt.title('Training Loss')
    plt.legend()
    plt.grid(True, alpha=0.3)
    plt.ylim(bottom=0)
    plt.tight_layout()

    plot_decision_boundary(X, y_raw, scorer)


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
    make_moons_example()
    plt.show()
