"""
Model Training Module
=====================

Ordinary least squares models of a sentiment index against economic indicators.

Features:
    - OLS with intercept solved by QR decomposition (no normal-equation inverse)
    - Coefficients, standard errors, t statistics and p-values
    - Fitted values and residuals for the training rows
    - Point predictions and prediction intervals for new rows
    - Model persistence (save/load)
    - Training several independent models, optionally in parallel
"""

import logging
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union
from datetime import datetime

import numpy as np
import pandas as pd
import joblib
from joblib import Parallel, delayed
from scipy import linalg, stats

from .data_loader import require_columns, table_name
from .errors import (
    CollinearPredictorsError,
    InsufficientDataError,
    LengthMismatchError,
    SchemaMismatchError,
)

logger = logging.getLogger(__name__)

INTERCEPT = "intercept"

ArrayLike = Union[Sequence[float], np.ndarray, pd.Series]


def _read_only(values: np.ndarray) -> np.ndarray:
    values = np.array(values, dtype=float)
    values.setflags(write=False)
    return values


def significance_stars(p_value: float) -> str:
    """Conventional significance marker for a p-value."""
    if np.isnan(p_value):
        return ""
    if p_value < 0.001:
        return "***"
    if p_value < 0.01:
        return "**"
    if p_value < 0.05:
        return "*"
    if p_value < 0.1:
        return "."
    return ""


class OLSModel:
    """
    A fitted ordinary least squares model.

    Owns the target name, the ordered predictor names, coefficients (intercept
    first) with their standard errors, and the fitted values and residuals of
    the training rows. Instances are created by ``OLSModel.fit`` and cannot be
    changed afterwards; every array is read-only, so one model can serve
    concurrent predictions and diagnostics.
    """

    def __init__(
        self,
        target: str,
        predictors: Sequence[str],
        coefficients: np.ndarray,
        cov_unscaled: np.ndarray,
        actual: np.ndarray,
        fitted: np.ndarray,
        training_index: Sequence[Any],
        name: Optional[str] = None,
        training_info: Optional[Dict[str, Any]] = None
    ):
        self.name = name or target
        self.target = target
        self.predictors = tuple(predictors)
        self._coefficients = _read_only(coefficients)
        self._cov_unscaled = _read_only(cov_unscaled)
        self._actual = _read_only(actual)
        self._fitted = _read_only(fitted)
        self._residuals = _read_only(self._actual - self._fitted)
        self.training_index = pd.Index(training_index)
        self.training_info = dict(training_info or {})

        n, k = len(self._actual), len(self._coefficients)
        self.n_obs = n
        self.df_resid = n - k
        ssr = float(self._residuals @ self._residuals)
        self.sigma2 = ssr / self.df_resid

        sst = float(((self._actual - self._actual.mean()) ** 2).sum())
        self.r2 = 1.0 - ssr / sst if sst > 0 else np.nan
        self.adj_r2 = 1.0 - (1.0 - self.r2) * (n - 1) / self.df_resid if sst > 0 else np.nan
        if k > 1 and sst > 0:
            self.f_statistic = ((sst - ssr) / (k - 1)) / self.sigma2 if self.sigma2 > 0 else np.inf
            self.f_p_value = float(stats.f.sf(self.f_statistic, k - 1, self.df_resid))
        else:
            self.f_statistic = np.nan
            self.f_p_value = np.nan

        with np.errstate(divide="ignore", invalid="ignore"):
            std_errors = np.sqrt(self.sigma2 * np.diag(self._cov_unscaled))
            t_values = self._coefficients / std_errors
        self._std_errors = _read_only(std_errors)
        self._t_values = _read_only(t_values)
        self._p_values = _read_only(2 * stats.t.sf(np.abs(t_values), self.df_resid))

        self._frozen = True

    def __setattr__(self, key: str, value: Any) -> None:
        if getattr(self, "_frozen", False):
            raise AttributeError(f"OLSModel is immutable after fitting; cannot set '{key}'")
        super().__setattr__(key, value)

    def __repr__(self) -> str:
        return (
            f"OLSModel(name={self.name!r}, target={self.target!r}, "
            f"predictors={list(self.predictors)!r}, n_obs={self.n_obs}, r2={self.r2:.4f})"
        )

    @classmethod
    def fit(
        cls,
        target: ArrayLike,
        predictors: Sequence[ArrayLike],
        predictor_names: Optional[Sequence[str]] = None,
        target_name: Optional[str] = None,
        index: Optional[Sequence[Any]] = None,
        name: Optional[str] = None
    ) -> 'OLSModel':
        """
        Fit y = b0 + b1*x1 + ... + bp*xp by least squares.

        The design matrix [1, x1, ..., xp] is factored as QR and the triangular
        system R b = Q'y is solved directly, which stays accurate when
        predictors are strongly correlated (e.g. a variable and its square).

        Args:
            target: Target values (length N)
            predictors: One sequence per predictor (each length N)
            predictor_names: Names of the predictors (default: Series names, or x1..xp)
            target_name: Name of the target (default: Series name, or 'y')
            index: Row labels for the training rows (default: target Series index)
            name: Model name used in reports

        Returns:
            Fitted OLSModel

        Raises:
            InsufficientDataError: If lengths differ or N <= p + 1
            CollinearPredictorsError: If the design matrix is rank deficient
            LengthMismatchError: If ``index`` does not label every row
            ValueError: If any value is missing or infinite
        """
        predictors = list(predictors)
        if predictor_names is None:
            predictor_names = [
                getattr(p, "name", None) or f"x{i + 1}" for i, p in enumerate(predictors)
            ]
        predictor_names = [str(n) for n in predictor_names]
        if len(predictor_names) != len(predictors):
            raise SchemaMismatchError(
                f"{len(predictor_names)} predictor names given for {len(predictors)} predictors"
            )
        if len(set(predictor_names)) != len(predictor_names):
            raise SchemaMismatchError(f"Predictor names must be unique, got {predictor_names}")
        if target_name is None:
            target_name = getattr(target, "name", None) or "y"
        if index is None:
            index = target.index if isinstance(target, pd.Series) else range(len(target))

        y = np.asarray(target, dtype=float)
        columns = [np.asarray(p, dtype=float) for p in predictors]

        lengths = {target_name: len(y)}
        lengths.update({n: len(c) for n, c in zip(predictor_names, columns)})
        if len(set(lengths.values())) > 1:
            raise InsufficientDataError(
                f"Model '{name or target_name}': target and predictors must have equal length, got {lengths}"
            )

        n, p = len(y), len(columns)
        if len(index) != n:
            raise LengthMismatchError(
                f"Model '{name or target_name}': {len(index)} row labels for {n} training rows"
            )
        if n <= p + 1:
            raise InsufficientDataError(
                f"Model '{name or target_name}': {n} rows is not enough for {p} predictors "
                f"plus intercept (need more than {p + 1})"
            )

        X = np.column_stack([np.ones(n)] + columns)
        if not (np.isfinite(X).all() and np.isfinite(y).all()):
            raise ValueError(
                f"Model '{name or target_name}': training data contains missing or infinite values"
            )

        rank = np.linalg.matrix_rank(X)
        if rank < X.shape[1]:
            raise CollinearPredictorsError(
                f"Model '{name or target_name}': predictors {predictor_names} (with intercept) "
                f"have rank {rank} < {X.shape[1]}; a predictor is determined by the others"
            )

        Q, R = np.linalg.qr(X)
        coefficients = linalg.solve_triangular(R, Q.T @ y)
        R_inv = linalg.solve_triangular(R, np.eye(R.shape[0]))

        return cls(
            target=target_name,
            predictors=predictor_names,
            coefficients=coefficients,
            cov_unscaled=R_inv @ R_inv.T,
            actual=y,
            fitted=X @ coefficients,
            training_index=index,
            name=name
        )

    @property
    def coefficients(self) -> pd.Series:
        """Estimates indexed by ['intercept', *predictors]."""
        return pd.Series(self._coefficients, index=self.coefficient_names, name="estimate")

    @property
    def coefficient_names(self) -> List[str]:
        return [INTERCEPT] + list(self.predictors)

    @property
    def std_errors(self) -> pd.Series:
        return pd.Series(self._std_errors, index=self.coefficient_names, name="std_error")

    @property
    def t_values(self) -> pd.Series:
        return pd.Series(self._t_values, index=self.coefficient_names, name="t_value")

    @property
    def p_values(self) -> pd.Series:
        return pd.Series(self._p_values, index=self.coefficient_names, name="p_value")

    @property
    def actual(self) -> pd.Series:
        return pd.Series(self._actual, index=self.training_index, name="actual")

    @property
    def fitted_values(self) -> pd.Series:
        return pd.Series(self._fitted, index=self.training_index, name="fitted")

    @property
    def residuals(self) -> pd.Series:
        """Actual minus fitted, one per training row."""
        return pd.Series(self._residuals, index=self.training_index, name="residual")

    @property
    def residual_std_error(self) -> float:
        return float(np.sqrt(self.sigma2))

    def summary(self) -> pd.DataFrame:
        """
        Coefficient table for reporting.

        Returns:
            DataFrame indexed by coefficient name with columns
            estimate, std_error, t_value, p_value, significance
        """
        table = pd.concat(
            [self.coefficients, self.std_errors, self.t_values, self.p_values],
            axis=1
        )
        table["significance"] = [significance_stars(p) for p in self._p_values]
        return table

    def _row_vector(self, row: Union[Mapping[str, float], pd.Series]) -> np.ndarray:
        keys = [str(k) for k in row.keys()]
        if keys != list(self.predictors):
            raise SchemaMismatchError(
                f"Model '{self.name}' expects predictors {list(self.predictors)} in that order, "
                f"got {keys}"
            )
        return np.array([1.0] + [float(row[k]) for k in self.predictors])

    def predict(self, row: Union[Mapping[str, float], pd.Series]) -> float:
        """
        Predict the target for one row of predictor values.

        Args:
            row: Mapping (or Series) whose keys are exactly the model's
                predictor names, in the trained order

        Returns:
            Predicted target value

        Raises:
            SchemaMismatchError: If the row's predictor names or order differ
        """
        return float(self._row_vector(row) @ self._coefficients)

    def predict_interval(
        self,
        row: Union[Mapping[str, float], pd.Series],
        confidence_level: float = 0.95
    ) -> Dict[str, float]:
        """
        Predict one row with a t-based prediction interval.

        Args:
            row: Predictor values (same schema as ``predict``)
            confidence_level: Interval coverage, between 0 and 1

        Returns:
            Dictionary with prediction, lower_bound, upper_bound, std_error,
            margin_of_error and confidence_level
        """
        if not 0 < confidence_level < 1:
            raise ValueError(f"confidence_level must be between 0 and 1, got {confidence_level}")

        x = self._row_vector(row)
        prediction = float(x @ self._coefficients)
        std_error = float(np.sqrt(self.sigma2 * (1.0 + x @ self._cov_unscaled @ x)))
        margin = float(stats.t.ppf((1 + confidence_level) / 2, self.df_resid) * std_error)

        return {
            'prediction': prediction,
            'lower_bound': prediction - margin,
            'upper_bound': prediction + margin,
            'std_error': std_error,
            'margin_of_error': margin,
            'confidence_level': confidence_level
        }

    def predict_frame(self, df: pd.DataFrame) -> pd.Series:
        """
        Predict every row of a frame that holds the predictor columns.

        Rows with a missing predictor value get NaN.

        Raises:
            SchemaMismatchError: If any predictor column is missing
        """
        missing = [p for p in self.predictors if p not in df.columns]
        if missing:
            raise SchemaMismatchError(
                f"Model '{self.name}' needs predictors {missing} missing from {table_name(df)}"
            )

        X = df[list(self.predictors)].to_numpy(dtype=float)
        predictions = self._coefficients[0] + X @ self._coefficients[1:]
        return pd.Series(predictions, index=df.index, name="predicted")

    def _state(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'target': self.target,
            'predictors': list(self.predictors),
            'coefficients': np.array(self._coefficients),
            'cov_unscaled': np.array(self._cov_unscaled),
            'actual': np.array(self._actual),
            'fitted': np.array(self._fitted),
            'training_index': self.training_index,
            'training_info': dict(self.training_info)
        }

    def with_training_info(self, training_info: Dict[str, Any]) -> 'OLSModel':
        """Return a copy of this model carrying the given training metadata."""
        state = self._state()
        state['training_info'] = training_info
        return type(self)(**state)

    def save(self, filepath: str) -> None:
        """
        Save the fitted model to disk.

        Args:
            filepath: Path to save the model
        """
        Path(filepath).parent.mkdir(parents=True, exist_ok=True)
        joblib.dump(self._state(), filepath)
        logger.info(f"Model '{self.name}' saved to {filepath}")

    @classmethod
    def load(cls, filepath: str) -> 'OLSModel':
        """
        Load a fitted model from disk.

        Args:
            filepath: Path to the saved model

        Returns:
            Loaded OLSModel instance
        """
        state = joblib.load(filepath)
        model = cls(**state)
        logger.info(f"Model '{model.name}' loaded from {filepath}")
        return model


def fit(
    target: ArrayLike,
    predictors: Sequence[ArrayLike],
    **kwargs: Any
) -> OLSModel:
    """Fit an OLS model of ``target`` on ``predictors``. See OLSModel.fit."""
    return OLSModel.fit(target, predictors, **kwargs)


def predict(model: OLSModel, row: Union[Mapping[str, float], pd.Series]) -> float:
    """Apply a fitted model to one row of predictor values. See OLSModel.predict."""
    return model.predict(row)


def train_model(
    df: pd.DataFrame,
    target: str,
    predictors: Sequence[str],
    name: Optional[str] = None,
    index_col: Optional[str] = "date",
    save_path: Optional[str] = None
) -> OLSModel:
    """
    Fit one model from columns of a dataset.

    Rows missing the target or any predictor are dropped before fitting.

    Args:
        df: Joined dataset with derived features
        target: Target column (e.g. 'icc_all')
        predictors: Ordered predictor columns
        name: Model name used in reports (default: target)
        index_col: Column used to label training rows (default: 'date')
        save_path: Path to save the trained model (optional)

    Returns:
        Fitted OLSModel
    """
    name = name or target
    predictors = list(predictors)
    start_time = datetime.now()

    logger.info("=" * 60)
    logger.info(f"STARTING MODEL TRAINING: {name}")
    logger.info("=" * 60)
    logger.info(f"Target: {target}")
    logger.info(f"Predictors: {predictors}")

    require_columns(df, [target] + predictors)

    complete = df.dropna(subset=[target] + predictors)
    dropped = len(df) - len(complete)
    if dropped:
        logger.warning(f"Dropped {dropped} rows with missing values for model '{name}'")

    if index_col and index_col in complete.columns:
        index = complete[index_col].to_numpy()
    else:
        index = complete.index

    model = OLSModel.fit(
        complete[target],
        [complete[p] for p in predictors],
        predictor_names=predictors,
        target_name=target,
        index=index,
        name=name
    )

    end_time = datetime.now()
    training_duration = (end_time - start_time).total_seconds()

    model = model.with_training_info({
        'training_duration_seconds': training_duration,
        'n_samples': model.n_obs,
        'n_dropped': dropped,
        'trained_at': end_time.isoformat(),
        'source': table_name(df)
    })

    logger.info(f"R²: {model.r2:.4f} (adjusted {model.adj_r2:.4f}), n={model.n_obs}")
    logger.info("=" * 60)
    logger.info(f"MODEL TRAINING COMPLETE in {training_duration:.2f} seconds")
    logger.info("=" * 60)

    if save_path:
        model.save(save_path)

    return model


def train_models(
    df: pd.DataFrame,
    model_specs: Mapping[str, Mapping[str, Any]],
    n_jobs: int = 1,
    save_dir: Optional[str] = None
) -> Dict[str, OLSModel]:
    """
    Fit several independent models on the same dataset.

    Models share no state, so ``n_jobs > 1`` fits them in parallel with the
    same results as fitting them one after another.

    Args:
        df: Joined dataset with derived features
        model_specs: Mapping of model name -> {'target': ..., 'predictors': [...]}
        n_jobs: Number of parallel jobs (-1 for all cores)
        save_dir: Directory to save each model as <name>.joblib (optional)

    Returns:
        Dictionary of model name -> fitted OLSModel, in the order given
    """
    names = list(model_specs)
    for name in names:
        spec = model_specs[name]
        if 'target' not in spec or not spec.get('predictors'):
            raise ValueError(f"Model '{name}' needs a target and at least one predictor")

    models = Parallel(n_jobs=n_jobs)(
        delayed(train_model)(
            df,
            model_specs[name]['target'],
            model_specs[name]['predictors'],
            name=name
        )
        for name in names
    )

    result = dict(zip(names, models))
    if save_dir:
        for name, model in result.items():
            model.save(str(Path(save_dir) / f"{name}.joblib"))

    return result


def print_model_summary(model: OLSModel) -> None:
    """
    Print a summary of a fitted model.

    Args:
        model: Fitted model instance
    """
    print("\n" + "=" * 70)
    print(f"MODEL SUMMARY: {model.name}")
    print("=" * 70)
    print(f"Target: {model.target}")
    print(f"Observations: {model.n_obs}")
    print(f"\n{'Coefficient':<28} {'Estimate':>12} {'Std. Error':>12} {'t value':>9} {'Pr(>|t|)':>10}")
    print("-" * 70)

    for coef, row in model.summary().iterrows():
        print(f"{coef:<28} {row['estimate']:>12.5f} {row['std_error']:>12.5f} "
              f"{row['t_value']:>9.3f} {row['p_value']:>10.4g} {row['significance']}")

    print("-" * 70)
    print("Signif. codes: 0 '***' 0.001 '**' 0.01 '*' 0.05 '.' 0.1 ' ' 1")
    print(f"\nResidual standard error: {model.residual_std_error:.4f} on {model.df_resid} degrees of freedom")
    print(f"R²: {model.r2:.4f}, Adjusted R²: {model.adj_r2:.4f}")
    if not np.isnan(model.f_statistic):
        print(f"F-statistic: {model.f_statistic:.2f}, p-value: {model.f_p_value:.4g}")
    print("=" * 70 + "\n")
