"""Version information for exposure_response."""

__version__ = "0.1.0"
__author__ = "Exposure-Response Contributors"
__email__ = "maintainers@exposure-response.dev"
__description__ = (
    "Hierarchical exposure and outcome models: data shaping, simulation "
    "and posterior composition around a PyMC sampler"
)
__url__ = "https://github.com/exposure-response/exposure-response"
