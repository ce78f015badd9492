"""One-time DB setup: create tables and seed demo accounts plus a sample exam."""
from examily.core.security import hash_password
from examily.db.models import Exam, Question, QuestionTypeEnum, RoleEnum, User
from examily.db.session import Base, get_engine, get_session_factory

# 1. Create all tables
engine = get_engine()
Base.metadata.create_all(bind=engine)
print("✅ All tables created")

session_factory = get_session_factory()
with session_factory() as db:
    # 2. Demo teacher
    teacher = db.query(User).filter(User.email == "teacher@example.com").first()
    if not teacher:
        teacher = User(
            email="teacher@example.com",
            hashed_password=hash_password("teacher123"),
            full_name="Demo Teacher",
            role=RoleEnum.TEACHER,
            subject="Geography",
        )
        db.add(teacher)
        db.commit()
        db.refresh(teacher)
        print("✅ Created teacher: teacher@example.com / teacher123")
    else:
        print("  Teacher already exists")

    # 3. Demo student
    student = db.query(User).filter(User.email == "student@example.com").first()
    if not student:
        student = User(
            email="student@example.com",
            hashed_password=hash_password("student123"),
            full_name="Demo Student",
            role=RoleEnum.STUDENT,
            program="BSc Geography",
        )
        db.add(student)
        db.commit()
        print("✅ Created student: student@example.com / student123")
    else:
        print("  Student already exists")

    # 4. Sample exam under course code GEO101
    exam = db.query(Exam).filter(Exam.course_code == "GEO101").first()
    if not exam:
        exam = Exam(
            title="European Capitals",
            description="A short warm-up quiz on European capitals.",
            course_code="GEO101",
            time_limit=15,
            created_by=teacher.id,
            questions=[
                Question(
                    position=0,
                    question_type=QuestionTypeEnum.MULTIPLE_CHOICE,
                    text="What is the capital of France?",
                    options=["Paris", "Lyon", "Marseille"],
                    correct_answer="0",
                    points=2,
                ),
                Question(
                    position=1,
                    question_type=QuestionTypeEnum.TRUE_FALSE,
                    text="Berlin is the capital of Germany.",
                    options=["True", "False"],
                    correct_answer="0",
                    points=1,
                ),
                Question(
                    position=2,
                    question_type=QuestionTypeEnum.FILL_IN_BLANK,
                    text="The capital of Italy is ____.",
                    correct_answer="rome",
                    points=1,
                ),
                Question(
                    position=3,
                    question_type=QuestionTypeEnum.SHORT_ANSWER,
                    text="Name one river that flows through Vienna.",
                    points=1,
                ),
            ],
        )
        db.add(exam)
        db.commit()
        print(f"✅ Created sample exam GEO101 (id={exam.id})")
    else:
        print("  Sample exam already exists")

print("\n🎉 Database is ready to use!")
print("   Teacher: teacher@example.com / teacher123")
print("   Student: student@example.com / student123  (course code GEO101)")
