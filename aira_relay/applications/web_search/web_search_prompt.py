# 独立搜索接口使用的系统提示
WEB_SEARCH_SYSTEM_MESSAGE = (
    "You are a helpful search assistant. Provide accurate, up-to-date information with sources. "
    "Be concise but comprehensive."
)

# 对话增强（注入对话系统提示）时使用的系统提示
SEARCH_CONTEXT_SYSTEM_MESSAGE = "Provide factual, up-to-date information. Be concise and accurate."

NO_RESULTS_CONTENT = "No results found"
