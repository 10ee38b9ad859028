"""
End-to-end tests for Simulator / simulate_new.

Covers output shape and orientation, filtered-feature zero-fill, the
zero-mean short-circuit, post-processing switches, sparse output, new
covariates, precomputed quantiles, error propagation and the worker pool.
"""

import pytest
import numpy as np
import pandas as pd
import scipy.sparse as sp
import anndata as ad
from scipy.stats import poisson

from cellsynth import (
    ConfigurationError,
    GroupNotFoundError,
    ReferenceLayout,
    Simulator,
    ZeroVarianceWarning,
    simulate_new,
)

GENES = ['g0', 'g1', 'g2']
CELLS = ['c0', 'c1', 'c2', 'c3']


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

def _adata(sparse=False):
    X = np.arange(12, dtype=float).reshape(4, 3)
    counts = sp.csr_matrix(X) if sparse else X
    return ad.AnnData(
        X=X,
        obs=pd.DataFrame(index=CELLS),
        var=pd.DataFrame(index=GENES),
        layers={'counts': counts},
    )


@pytest.fixture
def adata():
    return _adata()


@pytest.fixture
def sparse_adata():
    return _adata(sparse=True)


@pytest.fixture
def input_data():
    return pd.DataFrame({'corr_group': ['ind'] * 4}, index=CELLS)


@pytest.fixture
def params():
    mean = pd.DataFrame(
        np.tile([0.0, 5.0, 2.0], (4, 1)), index=CELLS, columns=GENES
    )
    sigma = pd.DataFrame(np.full((4, 3), 0.5), index=CELLS, columns=GENES)
    zero = pd.DataFrame(np.full((4, 3), 0.1), index=CELLS, columns=GENES)
    return mean, sigma, zero


# ---------------------------------------------------------------------------
# End-to-end
# ---------------------------------------------------------------------------

class TestEndToEnd:
    def test_independent_three_families(self, adata, input_data, params):
        mean, sigma, zero = params
        counts = Simulator(random_state=0).simulate(
            adata, mean, sigma, zero, ['poisson', 'nb', 'zip'],
            input_data=input_data, copula_list={},
        )
        assert counts.shape == (3, 4)
        np.testing.assert_array_equal(counts[0], np.zeros(4))
        assert np.all(counts[1:] >= 0)
        np.testing.assert_array_equal(counts[1:], np.round(counts[1:]))

    def test_fitted_attributes(self, adata, input_data, params):
        mean, sigma, zero = params
        sim = Simulator(random_state=0)
        sim.simulate(adata, mean, sigma, zero, 'poisson',
                     input_data=input_data, copula_list={})
        assert list(sim.feature_names_) == GENES
        assert list(sim.cell_names_) == CELLS
        assert [g.label for g in sim.groups_] == ['ind']
        Q = sim.quantile_mat_
        assert Q.shape == (4, 3)
        assert np.all((Q >= 0.0) & (Q <= 1.0))

    def test_reproducible(self, adata, input_data, params):
        mean, sigma, zero = params
        kw = dict(input_data=input_data, copula_list={})
        a = Simulator(random_state=5).simulate(adata, mean, sigma, zero, 'nb', **kw)
        b = Simulator(random_state=5).simulate(adata, mean, sigma, zero, 'nb', **kw)
        np.testing.assert_array_equal(a, b)

    def test_gaussian_copula_with_normalised_keys(self, adata, params):
        mean, sigma, zero = params
        input_data = pd.DataFrame({'corr_group': ['T cell', 't  Cell!', 'b', 'B']})
        corr = np.eye(3)
        corr[1, 2] = corr[2, 1] = 0.5
        counts = simulate_new(
            adata, mean, sigma, zero, 'poisson', input_data=input_data,
            copula_list={' T cell ': corr, 'b': None}, random_state=0,
        )
        assert counts.shape == (3, 4)
        np.testing.assert_array_equal(counts[0], np.zeros(4))

    def test_vine_copula(self, adata, params, input_data):
        class ConstantVine:
            def simulate(self, n, qrng=False, num_threads=1, seeds=()):
                return np.full((n, 2), 0.5)

        mean, sigma, zero = params
        sim = Simulator(random_state=0)
        sim.simulate(
            adata, mean, sigma, zero, 'poisson',
            input_data=pd.DataFrame({'corr_group': ['v'] * 4}),
            copula_list={'v': ConstantVine()},
            important_feature=[False, True, True],
        )
        np.testing.assert_array_equal(sim.quantile_mat_[:, 1:], 0.5)


# ---------------------------------------------------------------------------
# Filtered features and zero means
# ---------------------------------------------------------------------------

class TestFilteredFeatures:
    def test_filtered_rows_are_zero(self, adata, input_data, params):
        mean, sigma, zero = params
        mean = mean.assign(g0=3.0)
        counts = Simulator(random_state=0).simulate(
            adata, mean, sigma, zero, ['poisson', 'poisson', 'poisson'],
            input_data=input_data, copula_list={}, filtered_gene=['g1'],
        )
        assert counts.shape == (3, 4)
        np.testing.assert_array_equal(counts[1], np.zeros(4))

    def test_filtered_feature_needs_no_parameters(self, adata, input_data, params):
        mean, sigma, zero = params
        counts = Simulator(random_state=0).simulate(
            adata, mean[['g0', 'g2']], sigma[['g0', 'g2']], zero[['g0', 'g2']],
            'poisson', input_data=input_data, copula_list={},
            filtered_gene=['g1'],
        )
        np.testing.assert_array_equal(counts[1], np.zeros(4))

    def test_zero_mean_feature(self, adata, input_data, params):
        mean, sigma, zero = params
        for family in ['poisson', 'nb', 'zip', 'zinb', 'gaussian', 'binomial']:
            counts = Simulator(random_state=0).simulate(
                adata, mean, sigma, zero, family,
                input_data=input_data, copula_list={},
            )
            np.testing.assert_array_equal(counts[0], np.zeros(4))


# ---------------------------------------------------------------------------
# Post-processing
# ---------------------------------------------------------------------------

class TestPostprocessing:
    def test_nonnegative_clamp(self, adata, input_data):
        mean = np.full((4, 3), -5.0)
        sigma = np.ones((4, 3))
        kw = dict(input_data=input_data, copula_list={})
        raw = Simulator(nonnegative=False, random_state=0).simulate(
            adata, mean, sigma, None, 'gaussian', **kw
        )
        clamped = Simulator(nonnegative=True, random_state=0).simulate(
            adata, mean, sigma, None, 'gaussian', **kw
        )
        assert np.any(raw < 0)
        assert np.all(clamped >= 0)

    def test_nonzerovar_repairs_constant_rows(self, adata, input_data):
        mean = np.full((4, 3), 1e-9)
        with pytest.warns(ZeroVarianceWarning):
            counts = Simulator(nonzerovar=True, random_state=0).simulate(
                adata, mean, None, None, 'binomial',
                input_data=input_data, copula_list={},
            )
        assert np.all(counts.var(axis=1) > 0)

    def test_nonzerovar_skips_filtered(self, adata, input_data):
        mean = np.full((4, 3), 1e-9)
        with pytest.warns(ZeroVarianceWarning):
            counts = Simulator(nonzerovar=True, random_state=0).simulate(
                adata, mean, None, None, 'binomial',
                input_data=input_data, copula_list={}, filtered_gene=['g2'],
            )
        np.testing.assert_array_equal(counts[2], np.zeros(4))
        assert np.all(counts[:2].var(axis=1) > 0)

    def test_sparse_reference_gives_sparse_output(self, sparse_adata, input_data, params):
        mean, sigma, zero = params
        counts = Simulator(random_state=0).simulate(
            sparse_adata, mean, sigma, zero, 'poisson',
            input_data=input_data, copula_list={},
        )
        assert sp.issparse(counts)
        assert counts.shape == (3, 4)

    def test_dense_x_assay(self, sparse_adata, input_data, params):
        mean, sigma, zero = params
        counts = Simulator(random_state=0).simulate(
            sparse_adata, mean, sigma, zero, 'poisson',
            input_data=input_data, copula_list={}, assay_use='X',
        )
        assert isinstance(counts, np.ndarray)


# ---------------------------------------------------------------------------
# New covariates and precomputed quantiles
# ---------------------------------------------------------------------------

class TestInputs:
    def test_new_covariate(self, adata, input_data):
        new = pd.DataFrame(
            {'corr_group': ['ind'] * 6}, index=[f'n{i}' for i in range(6)]
        )
        mean = np.full((6, 3), 2.0)
        sim = Simulator(random_state=0)
        counts = sim.simulate(
            adata, mean, None, None, 'poisson',
            input_data=input_data, copula_list={}, new_covariate=new,
        )
        assert counts.shape == (3, 6)
        assert list(sim.cell_names_) == list(new.index)

    def test_identical_new_covariate_ignored(self, adata, input_data, params):
        mean, sigma, zero = params
        sim = Simulator(random_state=0)
        sim.simulate(
            adata, mean, sigma, zero, 'poisson', input_data=input_data,
            copula_list={}, new_covariate=input_data.copy(),
        )
        assert list(sim.cell_names_) == CELLS

    def test_precomputed_quantiles(self, adata, params):
        mean, sigma, zero = params
        sim = Simulator(random_state=0)
        counts = sim.simulate(
            adata, mean, sigma, zero, 'poisson',
            quantile_mat=np.full((4, 3), 0.5),
        )
        np.testing.assert_array_equal(counts[1], poisson.ppf(0.5, 5.0))
        assert sim.groups_ is None

    def test_reference_layout(self, input_data, params):
        mean, sigma, zero = params
        layout = ReferenceLayout(GENES, CELLS, sparse=False)
        counts = simulate_new(
            layout, mean, sigma, zero, 'nb',
            input_data=input_data, copula_list={}, random_state=0,
        )
        assert counts.shape == (3, 4)


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

class TestErrors:
    def test_both_quantile_sources(self, adata, input_data, params):
        mean, sigma, zero = params
        with pytest.raises(ConfigurationError):
            Simulator().simulate(
                adata, mean, sigma, zero, 'poisson', input_data=input_data,
                quantile_mat=np.full((4, 3), 0.5), copula_list={},
            )

    def test_unknown_family(self, adata, input_data, params):
        mean, sigma, zero = params
        with pytest.raises(ConfigurationError, match='weibull'):
            Simulator().simulate(
                adata, mean, sigma, zero, 'weibull',
                input_data=input_data, copula_list={},
            )

    def test_missing_group(self, adata, params):
        mean, sigma, zero = params
        with pytest.raises(GroupNotFoundError):
            Simulator().simulate(
                adata, mean, sigma, zero, 'poisson',
                input_data=pd.DataFrame({'corr_group': ['a'] * 4}),
                copula_list={'b': np.eye(3)},
            )

    def test_integer_cluster_zero_is_rejected(self, adata, params):
        mean, sigma, zero = params
        with pytest.raises(ConfigurationError, match='empty'):
            Simulator(random_state=0).simulate(
                adata, mean, sigma, zero, 'poisson',
                input_data=pd.DataFrame({'corr_group': [0, 0, 1, 1]}),
                copula_list={0: np.eye(3), 1: np.eye(3)},
            )

    def test_gaussian_without_sigma(self, adata, params):
        mean, _, _ = params
        with pytest.raises(ConfigurationError, match='sigma_mat'):
            Simulator().simulate(
                adata, mean, None, None, 'gaussian',
                quantile_mat=np.full((4, 3), 0.5),
            )

    def test_gaussian_zero_sigma_on_nonzero_mean(self, adata, params):
        mean, sigma, _ = params
        sigma = sigma.copy()
        sigma.loc['c2', 'g2'] = 0.0
        with pytest.raises(ConfigurationError, match='g2'):
            Simulator().simulate(
                adata, mean, sigma, None, 'gaussian',
                quantile_mat=np.full((4, 3), 0.5),
            )

    def test_gaussian_zero_sigma_on_zero_mean_is_allowed(self, adata, params):
        mean, sigma, _ = params
        sigma = sigma.copy()
        sigma['g0'] = 0.0
        counts = Simulator(nonnegative=False).simulate(
            adata, mean, sigma, None, 'gaussian',
            quantile_mat=np.full((4, 3), 0.5),
        )
        np.testing.assert_array_equal(counts[0], 0.0)
        np.testing.assert_allclose(counts[1], 5.0)

    def test_missing_parameter_column(self, adata, input_data, params):
        mean, sigma, zero = params
        with pytest.raises(ConfigurationError, match='g2'):
            Simulator().simulate(
                adata, mean[['g0', 'g1']], sigma, zero, 'poisson',
                input_data=input_data, copula_list={},
            )

    def test_missing_layer(self, adata, input_data, params):
        mean, sigma, zero = params
        with pytest.raises(ConfigurationError, match='logcounts'):
            Simulator().simulate(
                adata, mean, sigma, zero, 'poisson', input_data=input_data,
                copula_list={}, assay_use='logcounts',
            )

    def test_copula_without_input_data(self, adata, params):
        mean, sigma, zero = params
        with pytest.raises(ConfigurationError, match='input_data'):
            Simulator().simulate(adata, mean, sigma, zero, 'poisson', copula_list={})

    def test_unsupported_parallelization(self, adata, input_data, params):
        mean, sigma, zero = params
        with pytest.raises(ConfigurationError):
            Simulator(parallelization='mpi').simulate(
                adata, mean, sigma, zero, 'poisson',
                input_data=input_data, copula_list={},
            )


# ---------------------------------------------------------------------------
# Estimator API and parallel execution
# ---------------------------------------------------------------------------

class TestEstimator:
    def test_get_params(self):
        params = Simulator(n_jobs=3, nonzerovar=True).get_params()
        assert params['n_jobs'] == 3
        assert params['nonzerovar'] is True

    def test_set_params(self):
        sim = Simulator().set_params(fastmvn=True)
        assert sim.fastmvn is True

    @pytest.mark.parametrize('parallelization', ['processes', 'progress'])
    def test_parallel_matches_serial(self, adata, input_data, params, parallelization):
        mean, sigma, zero = params
        kw = dict(input_data=input_data, copula_list={})
        serial = Simulator(n_jobs=1, random_state=0).simulate(
            adata, mean, sigma, zero, 'zinb', **kw
        )
        parallel = Simulator(
            n_jobs=2, parallelization=parallelization, random_state=0
        ).simulate(adata, mean, sigma, zero, 'zinb', **kw)
        np.testing.assert_array_equal(serial, parallel)

    def test_distributed_backend(self, adata, input_data, params):
        mean, sigma, zero = params
        kw = dict(input_data=input_data, copula_list={})
        serial = Simulator(random_state=0).simulate(
            adata, mean, sigma, zero, 'nb', **kw
        )
        threaded = Simulator(
            n_jobs=2, parallelization='distributed', backend='threading',
            random_state=0,
        ).simulate(adata, mean, sigma, zero, 'nb', **kw)
        np.testing.assert_array_equal(serial, threaded)
