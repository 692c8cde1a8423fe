# Copyright 2025 t54 labs
# SPDX-License-Identifier: Apache-2.0
"""
Check merchant and payer SOL balances on the configured Solana cluster
"""

import asyncio
import os
import sys
from datetime import datetime

from dotenv import load_dotenv

# Load environment variables
repo_root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, os.path.join(repo_root, "gateway", "src"))
load_dotenv()

from pbtc_gateway import AdapterUnavailable, GatewayRuntimeConfig, build_chain  # noqa: E402
from pbtc_gateway.tokens import PBTC_MINT, NativeAsset  # noqa: E402

# A payer needs enough SOL for fees and, on first payment, the merchant's token account rent
MIN_PAYER_LAMPORTS = 5_000_000


async def check_balances():
    """Check merchant and payer balances"""

    print("""
╔══════════════════════════════════════════════════════════╗
║            Solana Wallet Balance Check                   ║
╚══════════════════════════════════════════════════════════╝
    """)

    cfg = GatewayRuntimeConfig()
    rpc = build_chain(cfg)
    sol = NativeAsset()

    try:
        blockhash = await rpc.get_latest_blockhash()
    except AdapterUnavailable as e:
        print(f"❌ Unable to reach Solana RPC at {cfg.rpc_url}: {e.message}")
        await rpc.aclose()
        return

    print(f"✅ Connected to {cfg.network} (blockhash {blockhash.get('blockhash', '?')[:12]}...)")
    print(f"📅 Time: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")

    merchant_address = os.getenv("MERCHANT_WALLET")
    payer_address = os.getenv("PAYER_WALLET")

    if not merchant_address or not payer_address:
        print("\n❌ Wallet configuration not found")
        print("Please set MERCHANT_WALLET and PAYER_WALLET in .env")
        await rpc.aclose()
        return

    print("\n" + "=" * 60)
    print("Wallet Balances:")
    print("=" * 60)

    balances = {}
    for label, address in (("💵 Merchant", merchant_address), ("💰 Payer", payer_address)):
        lamports = await rpc.get_account_balance(address)
        balances[address] = lamports
        print(f"\n{label} wallet: {address}")
        print(f"   SOL:  {sol.to_display(lamports):.6f} SOL")

    cluster = "" if cfg.network == "mainnet-beta" else f"?cluster={cfg.network}"
    print("\n" + "=" * 60)
    print("Block Explorer Links:")
    print("=" * 60)
    print(f"\nMerchant: https://explorer.solana.com/address/{merchant_address}{cluster}")
    print(f"Payer: https://explorer.solana.com/address/{payer_address}{cluster}")
    print(f"PBTC: https://explorer.solana.com/address/{PBTC_MINT}{cluster}")

    print("\n" + "=" * 60)
    print("Payment Readiness Status:")
    print("=" * 60)
    if balances[payer_address] < MIN_PAYER_LAMPORTS:
        print(f"❌ Payer SOL insufficient (need at least {sol.to_display(MIN_PAYER_LAMPORTS)} SOL for fees)")
    else:
        print("✅ Payer SOL sufficient for fees")

    await rpc.aclose()


if __name__ == "__main__":
    asyncio.run(check_balances())
