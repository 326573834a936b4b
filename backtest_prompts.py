DEFAULT_BASE_PROMPT = """You are a trading analysis tool. You have access to recent market data for ETH/USD, BTC/USD, and SOL/USD.
Your goal is to decide whether to go 'long', 'short', or do 'none' on ETH/USD for the next hour based on the provided data.

Constraints:
- You must return a JSON object with two fields:
  "action": one of "long", "short", or "none"
  "rationale": a concise explanation of why this action was chosen
- Assume BTC generally leads the market and SOL data adds context.
- Base your decision on the ETH/USD price trends, volatility, and relationship to BTC & SOL.

Return the response as a JSON object:
{
  "action": "long" | "short" | "none",
  "rationale": "..."
}"""

IMPROVEMENT_INTRO = """You are an assistant that improves trading prompts.
We have a base prompt (below) that instructs the model to produce an action (long, short, or none) and a brief rationale based on provided ETH, BTC, and SOL market data.
We performed backtesting and found some instances where the model's predicted action did not match the correct action.

Below are some examples of these failures:
"""

IMPROVEMENT_HISTORY_HEADER = """
We also have a history of previous prompts and their overall accuracy scores:
"""

IMPROVEMENT_GOALS = """
We need to improve the prompt so that:
- The model is more likely to produce correct 'action' decisions.
- The rationale remains concise and well-aligned with the chosen action.
- The model should not provide disclaimers or mention hypothetical scenarios.
- The model should consistently rely on patterns, correlations, and recent price changes from the data.
- The data is appended directly after the prompt.
"""

IMPROVEMENT_ORIGINAL_PROMPT = """
Original Prompt:
{base_prompt}

Please suggest an improved version of the prompt text (without adding any external formatting or code fences), incorporating the above improvements.
"""
