# Embedding provider
DEFAULT_EMBEDDING_MODEL = "text-embedding-3-small"
MODEL_COSTS_PER_1M = {  # USD per 1M tokens
    "text-embedding-3-small": 0.02,
    "text-embedding-3-large": 0.13,
    "text-embedding-ada-002": 0.10,
}
DESCRIPTION_CHAR_BUDGET = 500  # chars of description fed to the embedder
MAX_PRODUCT_TAGS = 10

# Similarity search defaults
DEFAULT_MATCH_THRESHOLD = 0.7
DEFAULT_MATCH_COUNT = 10
PERSONALIZED_MATCH_THRESHOLD = 0.5  # wider net than direct search
SELF_MATCH_MARGIN = 1  # extra neighbours fetched when excluding the source product
HYBRID_KEYWORD_WEIGHT = 0.3
HYBRID_SEMANTIC_WEIGHT = 0.7
HYBRID_MATCH_COUNT = 20

# Preference aggregation
INTERACTION_WEIGHTS = {
    "view": 0.1,
    "click": 0.3,
    "add_to_cart": 0.5,
    "purchase": 1.0,
    "save": 0.7,
    "search": 0.2,
}
DEFAULT_INTERACTION_WEIGHT = 0.1
CATEGORY_SCORE_WEIGHTS = {
    "purchase": 1.0,
    "add_to_cart": 0.5,
    "save": 0.7,
    "click": 0.3,
}
INTENTFUL_INTERACTIONS = {"purchase", "add_to_cart", "click"}
TOP_CATEGORY_COUNT = 5
PROFILE_SCAN_LIMIT = 1000
SEARCH_BLEND_WEIGHT = 0.2  # 80% existing preference, 20% new search intent

# Recommendation scoring
CONTEXT_MATCH_THRESHOLD = 0.3
CANDIDATE_POOL_FACTOR = 3
PREFERENCE_WEIGHT = 0.4
CATEGORY_BONUS = 0.1
PRICE_BONUS = 0.05
PRICE_RANGE_SLACK_LOW = 0.8
PRICE_RANGE_SLACK_HIGH = 1.2
INTEREST_KEYWORD_BONUS = 0.1
CONVERSATION_TURNS = 3
MIN_CONFIDENCE = 0.5
MAX_EXPLANATION_FACTORS = 4
FALLBACK_REASON = "Popular gift choice"
TRENDING_WINDOW_DAYS = 7
TRENDING_CONFIDENCE = 0.7
SIMILAR_PRODUCTS_THRESHOLD = 0.5
SIMILAR_PRODUCTS_LIMIT = 10

# Explanation factors
PREFERENCE_FACTOR_THRESHOLD = 0.5
CONTEXT_FACTOR_THRESHOLD = 0.6
OCCASION_FACTOR_WEIGHT = 0.3
INTEREST_FACTOR_WEIGHT = 0.4
CATEGORY_FACTOR_WEIGHT = 0.3
PRICE_FACTOR_WEIGHT = 0.2
SAME_CATEGORY_FACTOR_WEIGHT = 0.3
QUERY_SNIPPET_CHARS = 30

# MMR proxy similarity
PROXY_CATEGORY_WEIGHT = 0.5
PROXY_PRICE_WEIGHT = 0.3

# Batch pipeline
CHARS_PER_TOKEN = 4
MS_PER_ITEM_ESTIMATE = 50
COST_SAMPLE_SIZE = 10
