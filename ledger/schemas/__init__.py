from .recurrences import (
    FrequencyConfig,
    RecurringExpenseBase,
    RecurringExpenseCreate,
    RecurringExpenseUpdate,
    RecurringExpense,
)

from .generation import (
    GenerationOutcome,
    GenerationSummary,
    GenerationRunResult,
    GenerationHistoryItem,
    GenerationStats,
    HolidaySyncResult,
)

from .transactions import Transaction
