from .chart import STANDARD_ACCOUNTS, ensure_account, register_account, seed_chart
from .expenses import record_expense
from .gst import (classify, compute_line_gst, gst_summary, is_inter_state,
                  purchase_register, record_gst, round2, sales_register,
                  split_gst, tax_period)
from .inventory import (adjust_stock, create_product, low_stock_products,
                        record_movement, stock_from_movements, verify_stock)
from .invoices import (cancel_payment, complete_payment, create_invoice_draft,
                       delete_invoice_draft, invoice_amount_paid,
                       invoice_balance_due, issue_invoice,
                       record_invoice_payment, update_invoice_draft,
                       void_invoice)
from .ledger import (Entry, account_balance, account_balances,
                     post_transaction, reverse_transaction, transaction_amount)
from .purchasing import (create_grn, create_purchase_order,
                         delete_purchase_order_draft, issue_purchase_order,
                         received_quantities, record_vendor_payment)
from .reconciliation import (MatchCandidate, auto_reconcile,
                             confirm_reconciliation, ignore_bank_transaction,
                             import_bank_transactions, match_bank_transaction,
                             unmatched_bank_transactions)
from .reports import (accounts_payable, accounts_receivable, balance_sheet,
                      gst_payable, net_profit, overdue_invoices,
                      profit_and_loss, total_expenses, total_revenue,
                      trial_balance)
