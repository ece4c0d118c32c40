"""
로컬 개발용 시드 스크립트
작성자/스테이커 사용자, 잔액, 지갑, 게시물을 만들고 접속용 토큰을 출력
"""

import os
import sys

sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from decimal import Decimal

from truthchain.config import settings
from truthchain.database.session import get_db_context
from truthchain.models.balance import TransactionTypeEnum
from truthchain.schemas.post import PostCreate
from truthchain.schemas.user import UserCreate
from truthchain.services.auth_service import AuthService
from truthchain.services.balance_service import BalanceService
from truthchain.services.post_service import PostService
from truthchain.repositories.user_repository import UserRepository

DEMO_WALLETS = {
    "author@example.com": "A" * 58,
    "staker@example.com": "B" * 58,
}


def seed_demo_data():
    """데모 사용자 2명과 게시물 1개 생성"""
    with get_db_context() as db:
        auth = AuthService(db, settings=settings)
        balances = BalanceService(db)
        users = UserRepository(db)

        tokens = {}
        created = {}
        for email, wallet in DEMO_WALLETS.items():
            user = users.get_by_email(email) or auth.register_user(
                UserCreate(email=email, nickname=email.split("@")[0])
            )
            users.set_wallet(user.id, wallet, connected=True)
            balances.credit(
                user.id,
                Decimal("100"),
                TransactionTypeEnum.ADMIN_ADJUSTMENT,
                "Demo funds",
                ref_id=f"seed_demo_funds:{user.id}",
            )
            created[email] = user
            tokens[email] = auth.issue_token(user).access_token

        post = PostService(db, settings=settings).create_post(
            created["author@example.com"].id,
            PostCreate(
                content="The new bridge opens to traffic next Monday.",
                stake_amount=Decimal("5"),
                category="local",
                truth_confidence=80,
            ),
        )
        print(f"✅ 시드 데이터 생성 완료: post {post.post.id}")
        for email, token in tokens.items():
            print(f"   {email}: Bearer {token}")


if __name__ == "__main__":
    seed_demo_data()
