"""
Bayesian modelling components for league ranking.
"""

from league_ranking.model.data import MatchData, ScheduleEncoder
from league_ranking.model.core import (
    ModelConfig,
    ScoringModel,
    PoissonModel,
    NegativeBinomialModel,
    SumToZeroBlock,
    ParameterLayout,
    get_model,
)
from league_ranking.model.errors import (
    ConfigurationError,
    IdentifiabilityError,
    SamplerStallError,
    SamplingCancelled,
    InsufficientDataError,
)
from league_ranking.model.inference import (
    InferenceConfig,
    ModelFitter,
    PosteriorSampleSet,
    run,
    sample,
)
from league_ranking.model.league_table import (
    LeagueTable,
    PointsConfig,
    match_points,
    table_points,
    competition_rank,
)
from league_ranking.model.season_predictor import (
    SeasonReplayer,
    ReplayResult,
    ReplayTable,
    MatchPrediction,
    simulate_round_robin,
)
from league_ranking.model.diagnostics import (
    geweke,
    effective_sample_size,
    autocorrelation,
    r_hat,
    diagnostics_table,
)
from league_ranking.model.comparison import (
    InformationCriterion,
    NormalMarginal,
    BayesFactorResult,
    dic,
    compare_dic,
    bayes_factor_sign,
    bayes_factor_home_advantage,
)
from league_ranking.model.summary import entity_summary, format_comparison

__all__ = [
    "MatchData",
    "ScheduleEncoder",
    "ModelConfig",
    "ScoringModel",
    "PoissonModel",
    "NegativeBinomialModel",
    "SumToZeroBlock",
    "ParameterLayout",
    "get_model",
    "ConfigurationError",
    "IdentifiabilityError",
    "SamplerStallError",
    "SamplingCancelled",
    "InsufficientDataError",
    "InferenceConfig",
    "ModelFitter",
    "PosteriorSampleSet",
    "run",
    "sample",
    "LeagueTable",
    "PointsConfig",
    "match_points",
    "table_points",
    "competition_rank",
    "SeasonReplayer",
    "ReplayResult",
    "ReplayTable",
    "MatchPrediction",
    "simulate_round_robin",
    "geweke",
    "effective_sample_size",
    "autocorrelation",
    "r_hat",
    "diagnostics_table",
    "InformationCriterion",
    "NormalMarginal",
    "BayesFactorResult",
    "dic",
    "compare_dic",
    "bayes_factor_sign",
    "bayes_factor_home_advantage",
    "entity_summary",
    "format_comparison",
]
