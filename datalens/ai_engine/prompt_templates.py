INSIGHTS_PROMPT = (
    "Analyze this dataset and provide {count} key business insights. "
    "Format each insight as a complete sentence. "
    "Dataset summary: {snapshot}"
)

CHAT_CONTEXT = "Dataset has {records} records with columns: {columns}. "

CHAT_PROMPT = (
    "{context}\n\n"
    "User question: {question}\n\n"
    "Provide a concise analysis based on the data."
)

# User-facing fallbacks; the underlying cause only goes to the log.
INSIGHTS_ERROR_MESSAGE = "Error generating insights. Please try again."
CHAT_ERROR_MESSAGE = "Sorry, I encountered an error. Please try again."
