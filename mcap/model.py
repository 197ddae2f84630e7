"""
Model Training Module
=====================

Three interchangeable regressors that predict (scaled) market capitalization:

    - NeuralNetworkModel: MLPRegressor trained by backpropagation
    - KNNModel: mean target of the k nearest training rows
    - RandomForestModel: RandomForestRegressor with an importance ranking

All three share the MarketCapModel interface (fit / predict / save / load)
and are built by name through MODEL_REGISTRY, so the pipeline picks them
from configuration.
"""

import logging
import warnings
from pathlib import Path
from typing import Dict, Any, Optional, List, Tuple, Type
from datetime import datetime

import numpy as np
import pandas as pd
import joblib
from scipy.special import expit, logit
from sklearn.ensemble import RandomForestRegressor
from sklearn.exceptions import ConvergenceWarning
from sklearn.neighbors import KNeighborsRegressor
from sklearn.neural_network import MLPRegressor

logger = logging.getLogger(__name__)

# Keeps logit() finite when the bounded network maps targets into (0, 1)
_BOUND_EPS = 1e-6


class MarketCapModel:
    """
    Base class for the market-cap regressors.

    Subclasses build the underlying scikit-learn estimator and list their
    hyperparameters; fitting, validation, bookkeeping and persistence live
    here.
    """

    model_type = "base"

    # Fitted attributes (beyond the estimator) that must survive save/load
    _state_attributes: Tuple[str, ...] = ()

    def __init__(self):
        self.model = None
        self.feature_names_: Optional[List[str]] = None
        self.n_features_in_: Optional[int] = None
        self.training_info: Dict[str, Any] = {}
        self._is_fitted = False

    def get_params(self) -> Dict[str, Any]:
        """Hyperparameters passed to the constructor."""
        raise NotImplementedError

    def _create_estimator(self):
        raise NotImplementedError

    def _fit_estimator(self, X: np.ndarray, y: np.ndarray) -> None:
        self.model.fit(X, y)

    def _predict_estimator(self, X: np.ndarray) -> np.ndarray:
        return self.model.predict(X)

    def _as_array(self, X) -> np.ndarray:
        if isinstance(X, pd.DataFrame):
            if self.feature_names_ is not None:
                missing = [col for col in self.feature_names_ if col not in X.columns]
                if missing:
                    raise ValueError(f"Missing feature columns: {missing}")
                X = X[self.feature_names_]
            return X.to_numpy(dtype=float)
        return np.asarray(X, dtype=float)

    def fit(self, X, y) -> 'MarketCapModel':
        """
        Train the model.

        Args:
            X: Feature table (DataFrame or array of shape (n_samples, n_features))
            y: Target values of shape (n_samples,)

        Returns:
            Self for method chaining
        """
        start_time = datetime.now()

        self.feature_names_ = list(X.columns) if isinstance(X, pd.DataFrame) else None
        X_arr = self._as_array(X)
        y_arr = np.asarray(y, dtype=float).ravel()

        if len(X_arr) != len(y_arr):
            raise ValueError(f"X has {len(X_arr)} rows but y has {len(y_arr)}")

        logger.info("=" * 60)
        logger.info(f"TRAINING {self.model_type.upper()}")
        logger.info("=" * 60)
        logger.info(f"Training data shape: X={X_arr.shape}, y={y_arr.shape}")
        logger.info("Hyperparameters:")
        for key, value in self.get_params().items():
            logger.info(f"  - {key}: {value}")

        self.n_features_in_ = X_arr.shape[1]
        self.model = self._create_estimator()
        self._fit_estimator(X_arr, y_arr)

        end_time = datetime.now()
        training_duration = (end_time - start_time).total_seconds()

        self.training_info.update({
            'training_duration_seconds': training_duration,
            'n_samples': X_arr.shape[0],
            'n_features': X_arr.shape[1],
            'trained_at': end_time.isoformat(),
            'hyperparameters': self.get_params()
        })

        self._is_fitted = True

        logger.info(f"{self.model_type} trained in {training_duration:.2f} seconds")
        return self

    def predict(self, X) -> np.ndarray:
        """
        Predict scaled market capitalization.

        Args:
            X: Feature table; a DataFrame is reduced to the training columns

        Returns:
            Predictions array of shape (n_samples,)
        """
        if not self._is_fitted:
            raise ValueError("Model must be trained before prediction. Call fit() first.")

        X_arr = self._as_array(X)

        if X_arr.shape[1] != self.n_features_in_:
            raise ValueError(
                f"Expected {self.n_features_in_} features, but got {X_arr.shape[1]}"
            )

        return np.asarray(self._predict_estimator(X_arr), dtype=float).ravel()

    def save(self, filepath: str) -> None:
        """
        Save the trained model to disk.

        Args:
            filepath: Path to save the model
        """
        if not self._is_fitted:
            raise ValueError("Cannot save untrained model.")

        state = {
            'model_type': self.model_type,
            'model': self.model,
            'hyperparameters': self.get_params(),
            'feature_names_': self.feature_names_,
            'n_features_in_': self.n_features_in_,
            'training_info': self.training_info,
            'fitted_state': {name: getattr(self, name) for name in self._state_attributes},
            '_is_fitted': self._is_fitted
        }

        Path(filepath).parent.mkdir(parents=True, exist_ok=True)
        joblib.dump(state, filepath)
        logger.info(f"Model saved to {filepath}")

    @classmethod
    def load(cls, filepath: str) -> 'MarketCapModel':
        """
        Load a trained model from disk.

        Args:
            filepath: Path to the saved model

        Returns:
            Loaded model instance
        """
        state = joblib.load(filepath)

        if cls is MarketCapModel:
            cls = get_model_class(state['model_type'])
        elif state['model_type'] != cls.model_type:
            raise ValueError(
                f"{filepath} holds a '{state['model_type']}' model, not '{cls.model_type}'"
            )

        model = cls(**state['hyperparameters'])
        model.model = state['model']
        model.feature_names_ = state['feature_names_']
        model.n_features_in_ = state['n_features_in_']
        model.training_info = state['training_info']
        for name, value in state['fitted_state'].items():
            setattr(model, name, value)
        model._is_fitted = state['_is_fitted']

        logger.info(f"Model loaded from {filepath}")
        return model


class NeuralNetworkModel(MarketCapModel):
    """
    Feed-forward network trained by backpropagation on squared error.

    With ``linear_output=False`` the output unit is bounded: targets are
    min-max mapped into (0, 1) and fitted on the logit scale, and
    predictions come back through the logistic function, so they stay
    inside the training target range.
    """

    model_type = "neural_network"
    _state_attributes = ('target_min_', 'target_max_')

    def __init__(
        self,
        hidden_layer_sizes: Tuple[int, ...] = (8, 4),
        linear_output: bool = True,
        activation: str = "logistic",
        solver: str = "adam",
        alpha: float = 0.0001,
        learning_rate_init: float = 0.001,
        max_iter: int = 2000,
        random_state: Optional[int] = 42
    ):
        """
        Args:
            hidden_layer_sizes: Width of each hidden layer, e.g. (8, 4) or (40, 20, 10)
            linear_output: Linear output unit if True, bounded (logistic) if False
            activation: Hidden layer activation
            solver: Weight optimizer
            alpha: L2 penalty
            learning_rate_init: Initial learning rate
            max_iter: Maximum training epochs
            random_state: Seed for weight initialization
        """
        super().__init__()
        self.hidden_layer_sizes = tuple(hidden_layer_sizes)
        self.linear_output = linear_output
        self.activation = activation
        self.solver = solver
        self.alpha = alpha
        self.learning_rate_init = learning_rate_init
        self.max_iter = max_iter
        self.random_state = random_state

        self.target_min_: Optional[float] = None
        self.target_max_: Optional[float] = None

    def get_params(self) -> Dict[str, Any]:
        return {
            'hidden_layer_sizes': self.hidden_layer_sizes,
            'linear_output': self.linear_output,
            'activation': self.activation,
            'solver': self.solver,
            'alpha': self.alpha,
            'learning_rate_init': self.learning_rate_init,
            'max_iter': self.max_iter,
            'random_state': self.random_state
        }

    def _create_estimator(self) -> MLPRegressor:
        return MLPRegressor(
            hidden_layer_sizes=self.hidden_layer_sizes,
            activation=self.activation,
            solver=self.solver,
            alpha=self.alpha,
            learning_rate_init=self.learning_rate_init,
            max_iter=self.max_iter,
            random_state=self.random_state
        )

    def _target_span(self) -> float:
        span = self.target_max_ - self.target_min_
        return span if span > 0 else 1.0

    def _fit_estimator(self, X: np.ndarray, y: np.ndarray) -> None:
        if not self.linear_output:
            self.target_min_ = float(y.min())
            self.target_max_ = float(y.max())
            unit = np.clip((y - self.target_min_) / self._target_span(),
                           _BOUND_EPS, 1 - _BOUND_EPS)
            y = logit(unit)

        with warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter("always", ConvergenceWarning)
            self.model.fit(X, y)

        converged = True
        for warning in caught:
            if issubclass(warning.category, ConvergenceWarning):
                converged = False
            else:
                warnings.warn(warning.message, warning.category)

        if not converged:
            logger.warning(
                f"Neural network did not converge within {self.max_iter} iterations; "
                "keeping the best-effort weights"
            )

        self.training_info['converged'] = converged
        self.training_info['n_iter'] = int(self.model.n_iter_)
        self.training_info['final_loss'] = float(self.model.loss_)

    def _predict_estimator(self, X: np.ndarray) -> np.ndarray:
        output = self.model.predict(X)
        if self.linear_output:
            return output
        bounded = expit(output) * self._target_span() + self.target_min_
        return np.clip(bounded, self.target_min_, self.target_max_)


class KNNModel(MarketCapModel):
    """
    k-nearest-neighbors regression.

    Predicts the mean target of the k training rows closest in Euclidean
    distance over the (scaled) features.
    """

    model_type = "knn"

    def __init__(self, n_neighbors: int = 5):
        """
        Args:
            n_neighbors: Number of neighbors averaged per prediction
        """
        super().__init__()
        self.n_neighbors = n_neighbors

    def get_params(self) -> Dict[str, Any]:
        return {'n_neighbors': self.n_neighbors}

    def _create_estimator(self) -> KNeighborsRegressor:
        return KNeighborsRegressor(
            n_neighbors=self.n_neighbors,
            weights="uniform",
            metric="euclidean"
        )

    def _fit_estimator(self, X: np.ndarray, y: np.ndarray) -> None:
        if self.n_neighbors > len(X):
            raise ValueError(
                f"n_neighbors={self.n_neighbors} exceeds the {len(X)} training rows"
            )
        self.model.fit(X, y)


class RandomForestModel(MarketCapModel):
    """
    Random forest regression with a variable-importance ranking.
    """

    model_type = "random_forest"

    def __init__(
        self,
        n_estimators: int = 500,
        max_features=None,
        min_samples_leaf: int = 1,
        random_state: Optional[int] = 42,
        n_jobs: Optional[int] = None
    ):
        """
        Args:
            n_estimators: Number of trees
            max_features: Candidate variables per split (int, float, "sqrt"
                or None for all features)
            min_samples_leaf: Minimum rows per leaf
            random_state: Seed for bootstrapping and feature sampling
            n_jobs: Parallel jobs used by scikit-learn
        """
        super().__init__()
        self.n_estimators = n_estimators
        self.max_features = max_features
        self.min_samples_leaf = min_samples_leaf
        self.random_state = random_state
        self.n_jobs = n_jobs

    def get_params(self) -> Dict[str, Any]:
        return {
            'n_estimators': self.n_estimators,
            'max_features': self.max_features,
            'min_samples_leaf': self.min_samples_leaf,
            'random_state': self.random_state,
            'n_jobs': self.n_jobs
        }

    def _create_estimator(self) -> RandomForestRegressor:
        return RandomForestRegressor(
            n_estimators=self.n_estimators,
            max_features=self.max_features,
            min_samples_leaf=self.min_samples_leaf,
            random_state=self.random_state,
            n_jobs=self.n_jobs
        )

    def get_feature_importances(self) -> pd.DataFrame:
        """
        Rank features by impurity reduction.

        ``importance`` is the sum over all trees of the (unnormalized)
        impurity decrease attributed to each feature.

        Returns:
            DataFrame with feature, importance and importance_pct,
            sorted from most to least important
        """
        if not self._is_fitted:
            raise ValueError("Model must be trained first.")

        total = np.sum(
            [tree.tree_.compute_feature_importances(normalize=False)
             for tree in self.model.estimators_],
            axis=0
        )

        names = self.feature_names_ or [f"feature_{i+1}" for i in range(self.n_features_in_)]
        share = total / total.sum() * 100 if total.sum() > 0 else np.zeros_like(total)

        ranking = pd.DataFrame({
            'feature': names,
            'importance': total,
            'importance_pct': share
        })
        return ranking.sort_values('importance', ascending=False).reset_index(drop=True)


MODEL_REGISTRY: Dict[str, Type[MarketCapModel]] = {
    NeuralNetworkModel.model_type: NeuralNetworkModel,
    KNNModel.model_type: KNNModel,
    RandomForestModel.model_type: RandomForestModel,
}


def get_model_class(name: str) -> Type[MarketCapModel]:
    """Look up a model class by registry name."""
    if name not in MODEL_REGISTRY:
        raise ValueError(
            f"Unknown model: {name}. Choose from: {', '.join(MODEL_REGISTRY)}"
        )
    return MODEL_REGISTRY[name]


def create_model(name: str, **params) -> MarketCapModel:
    """
    Build an unfitted model from its registry name.

    Args:
        name: One of MODEL_REGISTRY's keys
        **params: Constructor arguments

    Returns:
        Unfitted model
    """
    return get_model_class(name)(**params)


def train_model(
    name: str,
    X_train: pd.DataFrame,
    y_train,
    params: Optional[Dict[str, Any]] = None,
    save_path: Optional[str] = None
) -> MarketCapModel:
    """
    Train a model using configuration parameters.

    ``params`` is one entry of the ``models`` config section. Its optional
    ``type`` names the registry entry when the config key is only a label
    (two network shapes, say), ``features`` restricts the training columns
    and ``enabled`` is ignored here; everything else goes to the constructor.

    Args:
        name: Registry name of the model, or a label when ``type`` is given
        X_train: Scaled training features
        y_train: Scaled training target
        params: Model configuration dictionary
        save_path: Path to save the trained model (optional)

    Returns:
        Trained model
    """
    params = dict(params or {})
    model_type = params.pop('type', name)
    features = params.pop('features', None)
    params.pop('enabled', None)

    if 'hidden_layer_sizes' in params:
        params['hidden_layer_sizes'] = tuple(params['hidden_layer_sizes'])

    if features:
        X_train = X_train[list(features)]

    model = create_model(model_type, **params)
    model.fit(X_train, y_train)

    if save_path:
        model.save(save_path)

    return model


def print_model_summary(model: MarketCapModel) -> None:
    """
    Print a summary of the trained model.

    Args:
        model: Trained model instance
    """
    print("\n" + "=" * 50)
    print(f"MODEL SUMMARY: {model.model_type}")
    print("=" * 50)
    print(f"Estimator: {type(model.model).__name__}")
    print(f"Number of input features: {model.n_features_in_}")
    print("\nHyperparameters:")
    for key, value in model.get_params().items():
        print(f"  - {key}: {value}")

    if model.training_info:
        print("\nTraining Info:")
        print(f"  - Duration: {model.training_info.get('training_duration_seconds', 0):.2f}s")
        print(f"  - Samples: {model.training_info.get('n_samples', 'N/A')}")
        if 'converged' in model.training_info:
            print(f"  - Converged: {model.training_info['converged']}")
            print(f"  - Iterations: {model.training_info['n_iter']}")

    if isinstance(model, RandomForestModel) and model._is_fitted:
        print("\nVariable importance:")
        print(model.get_feature_importances().head(10).to_string(index=False))

    print("=" * 50 + "\n")
